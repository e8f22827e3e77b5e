"""Pydantic schemas for ledger consistency reports."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class BalanceDriftRead(BaseModel):
    client_id: str
    cached_balance: Decimal
    pending_total: Decimal


class ChargeStatusMismatchRead(BaseModel):
    charge_id: str
    client_id: str
    status: str
    payment_id: Optional[str] = None


class PaymentAllocationMismatchRead(BaseModel):
    payment_id: str
    client_id: str
    amount: Decimal
    allocated: Decimal
    unapplied_amount: Decimal
    credit_received: Decimal = Decimal("0.00")
    credit_given: Decimal = Decimal("0.00")


class ConsistencyReportRead(BaseModel):
    balance_drift: list[BalanceDriftRead]
    charge_status_mismatches: list[ChargeStatusMismatchRead]
    payment_allocation_mismatches: list[PaymentAllocationMismatchRead]
    duplicate_periods: list[str]
    is_consistent: bool
