"""Pydantic schemas for derived account state and statements."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from ..services.account_state import AccountStanding, PeriodState
from .billing import BillingProfileRead
from .charge import ChargeRead
from .payment import PaymentRead


class AccountStateRead(BaseModel):
    client_id: str
    pending_total: Decimal
    display_balance: Decimal
    standing: AccountStanding
    has_advance: bool
    next_due_date: date
    covered_until: Optional[str] = None
    covered_until_period: Optional[str] = None
    pending_count: int
    credit_amount: Decimal


class PeriodStatusRead(BaseModel):
    period_key: str
    label: str
    due_date: date
    days_until_due: int
    status: PeriodState
    charge_id: Optional[str] = None
    amount: Optional[Decimal] = None
    is_advance: bool = False


class PeriodStatusListResponse(BaseModel):
    items: list[PeriodStatusRead]
    total: int


class StatementRead(BaseModel):
    """Everything a statement or receipt renderer needs, read-only."""

    client_id: str
    client_name: str
    generated_on: date
    profile: BillingProfileRead
    state: AccountStateRead
    charges: list[ChargeRead]
    payments: list[PaymentRead]
