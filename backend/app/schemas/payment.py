"""Pydantic schemas for payments and allocation previews."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.payment import PaymentMethod
from .common import PaginatedResponse


class PaymentBase(BaseModel):
    """Shared attributes for payment operations."""

    paid_on: Optional[date] = Field(
        default=None, description="Fecha del pago; por omisión hoy"
    )
    amount: Decimal = Field(..., gt=0, description="Monto recibido")
    method: PaymentMethod = Field(default=PaymentMethod.EFECTIVO)
    bank_reference: Optional[str] = None
    receipt_number: Optional[str] = None
    payer_name: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = Field(
        default=None, description="Usuario que captura el pago"
    )


class PaymentCreate(PaymentBase):
    client_id: str
    charge_ids: Optional[list[str]] = Field(
        default=None,
        description="Cargos específicos a cubrir; por omisión los más antiguos",
    )


class PaymentUpdate(BaseModel):
    paid_on: Optional[date] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    method: Optional[PaymentMethod] = None
    bank_reference: Optional[str] = None
    receipt_number: Optional[str] = None
    payer_name: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None


class PaymentPreviewRequest(BaseModel):
    client_id: str
    amount: Decimal = Field(..., gt=0)
    paid_on: Optional[date] = None
    charge_ids: Optional[list[str]] = None


class PaymentRead(PaymentBase):
    id: str
    client_id: str
    unapplied_amount: Decimal
    credit_applied: Decimal = Decimal("0.00")
    created_at: datetime
    charge_ids: list[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class PaymentListResponse(PaginatedResponse[PaymentRead]):
    """Paginated payment listing."""

    pass


class AllocatedCharge(BaseModel):
    charge_id: Optional[str] = None
    description: str
    period_key: Optional[str] = None
    amount: Decimal
    is_advance: bool = False


class AllocationSummary(BaseModel):
    """How a payment amount is (or would be) distributed."""

    amount: Decimal
    covered: list[AllocatedCharge]
    advance: list[AllocatedCharge]
    allocated_to_pending: Decimal
    credit_applied: Decimal = Decimal("0.00")
    unapplied_amount: Decimal
    previous_balance: Decimal
    resulting_balance: Decimal


class PaymentWithSummary(PaymentRead):
    summary: AllocationSummary
