"""Pydantic schemas for billing profiles and proration."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProrationRead(BaseModel):
    """Result of the first-invoice proration calculator."""

    prorated_amount: Decimal
    days_charged: int
    first_billing_date: date
    days_in_month: int
    installation_cost: Decimal = Decimal("0")
    additional_charges: Decimal = Decimal("0")
    total_initial: Decimal


class BillingProfileCreate(BaseModel):
    """Billing terms captured when a client is onboarded."""

    installation_date: date
    billing_day: Optional[int] = Field(default=None, ge=1, le=28)
    monthly_fee: Decimal = Field(..., ge=0)
    installation_cost: Decimal = Field(default=Decimal("0"), ge=0)
    additional_charges: Decimal = Field(default=Decimal("0"), ge=0)
    additional_charges_notes: Optional[str] = None
    prorated_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Monto de prorrateo capturado manualmente; se calcula si se omite",
    )
    recorded_by: Optional[str] = None


class BillingProfileUpdate(BaseModel):
    """Changes to the billing day or plan fee; only future charges use them."""

    billing_day: Optional[int] = Field(default=None, ge=1, le=28)
    monthly_fee: Optional[Decimal] = Field(default=None, ge=0)
    recorded_by: Optional[str] = None

    @model_validator(mode="after")
    def _require_change(self):
        if self.billing_day is None and self.monthly_fee is None:
            raise ValueError("Debes indicar el nuevo día de corte o la nueva mensualidad.")
        return self


class BillingProfileRead(BaseModel):
    id: str
    client_id: str
    monthly_fee: Decimal
    billing_day: int
    installation_date: date
    first_billing_date: date
    installation_cost: Decimal
    prorated_amount: Decimal
    additional_charges: Decimal
    additional_charges_notes: Optional[str] = None
    balance: Decimal
    version: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
