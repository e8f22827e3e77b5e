"""Pydantic schemas for charges and charge generation."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models.charge import ChargeKind, ChargeStatus
from .common import PaginatedResponse


class ChargeCreate(BaseModel):
    """Manual charge, optionally based on a catalog template."""

    client_id: str
    amount: Optional[Decimal] = Field(
        default=None, gt=0, description="Se toma del catálogo cuando se omite"
    )
    description: Optional[str] = Field(default=None, max_length=255)
    catalog_item_id: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None

    @model_validator(mode="after")
    def _require_source(self):
        if self.catalog_item_id is None and (self.amount is None or not self.description):
            raise ValueError("Debes indicar monto y descripción o un concepto del catálogo.")
        return self


class ChargeUpdate(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=255)
    due_date: Optional[date] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None


class ChargeRead(BaseModel):
    id: str
    client_id: str
    kind: ChargeKind
    period_key: Optional[str] = None
    description: str
    amount: Decimal
    status: ChargeStatus
    due_date: Optional[date] = None
    paid_date: Optional[date] = None
    payment_id: Optional[str] = None
    is_advance: bool = False
    catalog_item_id: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChargeListResponse(PaginatedResponse[ChargeRead]):
    """Paginated charge listing."""

    pass


class ChargeGenerationRequest(BaseModel):
    """Generate one period, or every missing period through ``as_of``."""

    period_key: Optional[str] = Field(default=None, description="Periodo YYYY-MM")
    as_of: Optional[date] = None
    recorded_by: Optional[str] = None


class ChargeGenerationResponse(BaseModel):
    created: list[ChargeRead]
    existing_periods: list[str] = Field(default_factory=list)


class BatchGenerationRequest(BaseModel):
    period_key: Optional[str] = Field(
        default=None, description="Periodo YYYY-MM; por omisión el mes en curso"
    )
    recorded_by: Optional[str] = None


class BatchGenerationResponse(BaseModel):
    period_key: str
    created: list[str]
    skipped: list[str]
    failed: dict[str, str]
