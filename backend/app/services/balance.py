"""Keeps the cached client balance equal to the sum of pending charges."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterator, Optional

from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from .. import models
from ..database import read_int_env
from .amounts import ZERO, normalize_amount
from .errors import (
    ConcurrentUpdateError,
    DuplicatePeriodChargeError,
    LedgerNotFoundError,
    LedgerUnavailableError,
)

LOGGER = logging.getLogger(__name__)

LOCK_TIMEOUT_ENV = "LEDGER_LOCK_TIMEOUT_MS"
DEFAULT_LOCK_TIMEOUT_MS = 5000

_LOCK_FAILURE_MARKERS = ("lock timeout", "lock_timeout", "could not obtain lock", "database is locked")
_DUPLICATE_PERIOD_MARKERS = ("charges_unique_client_period", "charges.period_year")


def _translate_storage_error(exc: BaseException) -> Optional[Exception]:
    if isinstance(exc, StaleDataError):
        return ConcurrentUpdateError(
            "El estado de cuenta del cliente cambió durante la operación; intenta de nuevo."
        )
    if isinstance(exc, IntegrityError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        if any(marker in message for marker in _DUPLICATE_PERIOD_MARKERS):
            return DuplicatePeriodChargeError("Ya existe un cargo para este periodo.")
        return LedgerUnavailableError("No se pudo guardar la operación.")
    if isinstance(exc, OperationalError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        if any(marker in message for marker in _LOCK_FAILURE_MARKERS):
            return ConcurrentUpdateError(
                "Otra operación mantiene bloqueada la cuenta del cliente; intenta de nuevo."
            )
        return LedgerUnavailableError("La base de datos no está disponible.")
    if isinstance(exc, SQLAlchemyError):
        return LedgerUnavailableError("La base de datos no está disponible.")
    return None


@contextmanager
def ledger_transaction(db: Session, operation: str, **context: Any) -> Iterator[Session]:
    """Run one ledger mutation as a single unit of work.

    Commits on success. On any failure the whole unit is rolled back and
    storage errors are re-raised as ledger errors, so charges, balance and
    audit entries are never left in different states.
    """

    try:
        yield db
        db.commit()
    except Exception as exc:
        db.rollback()
        translated = _translate_storage_error(exc)
        if translated is None:
            raise
        LOGGER.warning(
            "Ledger operation %s rolled back: %s",
            operation,
            translated,
            extra={"operation": operation, **context},
        )
        raise translated from exc


def _apply_lock_timeout(db: Session) -> None:
    bind = db.get_bind()
    if bind.dialect.name != "postgresql":
        return
    timeout_ms = read_int_env(LOCK_TIMEOUT_ENV, DEFAULT_LOCK_TIMEOUT_MS)
    db.execute(text(f"SET LOCAL lock_timeout = {int(timeout_ms)}"))


def lock_billing_profile(db: Session, client_id: str) -> models.BillingProfile:
    """Load a client's billing profile holding its row lock when supported.

    Engines without ``SELECT ... FOR UPDATE`` still get protection from the
    profile's version counter: a stale update fails at flush time.
    """

    _apply_lock_timeout(db)
    profile = (
        db.query(models.BillingProfile)
        .filter(models.BillingProfile.client_id == str(client_id))
        .with_for_update()
        .populate_existing()
        .first()
    )
    if profile is None:
        raise LedgerNotFoundError("El cliente no tiene perfil de facturación.")
    return profile


def pending_total(db: Session, client_id: str) -> Decimal:
    """Sum of the client's pending charges as stored."""

    total = (
        db.query(func.coalesce(func.sum(models.Charge.amount), 0))
        .filter(
            models.Charge.client_id == str(client_id),
            models.Charge.status == models.ChargeStatus.PENDING,
        )
        .scalar()
    )
    return normalize_amount(total or ZERO)


class BalanceKeeper:
    """Applies balance deltas and re-derives the cached balance in the same unit."""

    @staticmethod
    def apply_delta(
        db: Session, profile: models.BillingProfile, delta: Decimal
    ) -> Decimal:
        """Move the balance by ``delta`` and reconcile it with pending charges.

        Must run inside :func:`ledger_transaction`; pending charge changes
        are flushed first so the recomputation sees them.
        """

        previous = normalize_amount(profile.balance)
        expected = normalize_amount(previous + normalize_amount(delta))
        db.flush()
        authoritative = pending_total(db, profile.client_id)
        if authoritative != expected:
            LOGGER.warning(
                "Cached balance drifted from pending charges; reconciling",
                extra={
                    "client_id": profile.client_id,
                    "previous_balance": str(previous),
                    "expected_balance": str(expected),
                    "pending_total": str(authoritative),
                },
            )
        profile.balance = authoritative
        # always emit the versioned UPDATE, even when the amount is unchanged
        flag_modified(profile, "balance")
        db.add(profile)
        db.flush()
        return authoritative

    @staticmethod
    def has_drift(db: Session, profile: models.BillingProfile) -> bool:
        return normalize_amount(profile.balance) != pending_total(db, profile.client_id)
