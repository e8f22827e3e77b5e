"""Utilities to detect and repair ledger inconsistencies."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models
from .amounts import ZERO, normalize_amount
from .balance import BalanceKeeper, ledger_transaction, lock_billing_profile
from .observability import ObservabilityService

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceDrift:
    """A cached balance that differs from the sum of pending charges."""

    client_id: str
    cached_balance: Decimal
    pending_total: Decimal


@dataclass(frozen=True)
class ChargeStatusMismatch:
    """A charge whose status disagrees with its payment link."""

    charge_id: str
    client_id: str
    status: str
    payment_id: str | None


@dataclass(frozen=True)
class PaymentAllocationMismatch:
    """A payment whose money does not add up.

    ``amount + credit_received`` must equal the linked charges plus the
    unapplied rest plus ``credit_given``.
    """

    payment_id: str
    client_id: str
    amount: Decimal
    allocated: Decimal
    unapplied_amount: Decimal
    credit_received: Decimal = ZERO
    credit_given: Decimal = ZERO


@dataclass(frozen=True)
class LedgerConsistencySnapshot:
    """Aggregated inconsistencies detected across the ledger."""

    balance_drift: list[BalanceDrift]
    charge_status_mismatches: list[ChargeStatusMismatch]
    payment_allocation_mismatches: list[PaymentAllocationMismatch]
    duplicate_periods: list[str]

    @property
    def is_consistent(self) -> bool:
        return not (
            self.balance_drift
            or self.charge_status_mismatches
            or self.payment_allocation_mismatches
            or self.duplicate_periods
        )


class DataConsistencyService:
    """Data reconciliation helpers to surface integrity issues."""

    @staticmethod
    def _build_amount_map(rows: Iterable[tuple[str | None, Decimal | None]]) -> dict[str, Decimal]:
        return {
            str(key): normalize_amount(value)
            for key, value in rows
            if key is not None and value is not None
        }

    @classmethod
    def balance_drift(cls, db: Session) -> list[BalanceDrift]:
        pending = cls._build_amount_map(
            db.query(models.Charge.client_id, func.sum(models.Charge.amount))
            .filter(models.Charge.status == models.ChargeStatus.PENDING)
            .group_by(models.Charge.client_id)
            .all()
        )
        drifts: list[BalanceDrift] = []
        for client_id, balance in db.query(
            models.BillingProfile.client_id, models.BillingProfile.balance
        ).order_by(models.BillingProfile.client_id):
            cached = normalize_amount(balance)
            expected = pending.get(str(client_id), ZERO)
            if cached != expected:
                drifts.append(
                    BalanceDrift(
                        client_id=str(client_id),
                        cached_balance=cached,
                        pending_total=expected,
                    )
                )
        return drifts

    @staticmethod
    def charge_status_mismatches(db: Session) -> list[ChargeStatusMismatch]:
        paid_unlinked = (models.Charge.status == models.ChargeStatus.PAID) & (
            models.Charge.payment_id.is_(None)
        )
        pending_linked = (models.Charge.status == models.ChargeStatus.PENDING) & (
            models.Charge.payment_id.isnot(None)
        )
        rows = db.query(models.Charge).filter(paid_unlinked | pending_linked).all()
        return [
            ChargeStatusMismatch(
                charge_id=str(charge.id),
                client_id=str(charge.client_id),
                status=charge.status.value,
                payment_id=str(charge.payment_id) if charge.payment_id else None,
            )
            for charge in rows
        ]

    @classmethod
    def payment_allocation_mismatches(cls, db: Session) -> list[PaymentAllocationMismatch]:
        allocated = cls._build_amount_map(
            db.query(models.Charge.payment_id, func.sum(models.Charge.amount))
            .filter(models.Charge.payment_id.isnot(None))
            .group_by(models.Charge.payment_id)
            .all()
        )
        transfer = models.PaymentCreditTransfer
        received = cls._build_amount_map(
            db.query(transfer.target_payment_id, func.sum(transfer.amount))
            .group_by(transfer.target_payment_id)
            .all()
        )
        given = cls._build_amount_map(
            db.query(transfer.source_payment_id, func.sum(transfer.amount))
            .group_by(transfer.source_payment_id)
            .all()
        )
        mismatches: list[PaymentAllocationMismatch] = []
        for payment in db.query(models.Payment).order_by(models.Payment.created_at):
            key = str(payment.id)
            linked = allocated.get(key, ZERO)
            unapplied = normalize_amount(payment.unapplied_amount)
            credit_received = received.get(key, ZERO)
            credit_given = given.get(key, ZERO)
            amount = normalize_amount(payment.amount)
            if amount + credit_received != linked + unapplied + credit_given:
                mismatches.append(
                    PaymentAllocationMismatch(
                        payment_id=key,
                        client_id=str(payment.client_id),
                        amount=amount,
                        allocated=linked,
                        unapplied_amount=unapplied,
                        credit_received=credit_received,
                        credit_given=credit_given,
                    )
                )
        return mismatches

    @staticmethod
    def duplicate_periods(db: Session) -> list[str]:
        rows = (
            db.query(
                models.Charge.client_id,
                models.Charge.period_year,
                models.Charge.period_month,
            )
            .filter(models.Charge.period_year.isnot(None))
            .group_by(
                models.Charge.client_id,
                models.Charge.period_year,
                models.Charge.period_month,
            )
            .having(func.count(models.Charge.id) > 1)
            .all()
        )
        return [f"{client_id}:{year:04d}-{month:02d}" for client_id, year, month in rows]

    @classmethod
    def check_consistency(cls, db: Session) -> LedgerConsistencySnapshot:
        """Scan every client for ledger invariant violations. Read-only."""

        snapshot = LedgerConsistencySnapshot(
            balance_drift=cls.balance_drift(db),
            charge_status_mismatches=cls.charge_status_mismatches(db),
            payment_allocation_mismatches=cls.payment_allocation_mismatches(db),
            duplicate_periods=cls.duplicate_periods(db),
        )
        if not snapshot.is_consistent:
            LOGGER.warning(
                "Ledger inconsistencies detected",
                extra={
                    "balance_drift": len(snapshot.balance_drift),
                    "status_mismatches": len(snapshot.charge_status_mismatches),
                    "allocation_mismatches": len(snapshot.payment_allocation_mismatches),
                    "duplicate_periods": len(snapshot.duplicate_periods),
                },
            )
        return snapshot

    @staticmethod
    def reconcile_balance(db: Session, client_id: str) -> Decimal:
        """Reset a client's cached balance to the sum of its pending charges."""

        with ObservabilityService.timed_event(
            db, "balances.reconciled", tags={"client_id": client_id}
        ):
            with ledger_transaction(db, "reconcile_balance", client_id=client_id):
                profile = lock_billing_profile(db, client_id)
                previous = normalize_amount(profile.balance)
                balance = BalanceKeeper.apply_delta(db, profile, ZERO)
        if previous != balance:
            LOGGER.info(
                "Cached balance reconciled",
                extra={"client_id": client_id, "previous": str(previous), "balance": str(balance)},
            )
        return balance
