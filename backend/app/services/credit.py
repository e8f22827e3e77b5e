"""Unapplied payment money that later payments may spend."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from .. import models
from .amounts import ZERO, normalize_amount
from .errors import ConcurrentUpdateError

LOGGER = logging.getLogger(__name__)


class CreditPool:
    """Moves a client's unapplied payment remainders between payments.

    Every move is a :class:`models.PaymentCreditTransfer` row, so undoing a
    payment hands back exactly what it took. Callers hold the client's
    billing profile lock.
    """

    @staticmethod
    def sources(
        db: Session, client_id: str, *, exclude: Iterable[str] = ()
    ) -> list[models.Payment]:
        """Payments with unapplied money, oldest first."""

        query = db.query(models.Payment).filter(
            models.Payment.client_id == str(client_id),
            models.Payment.unapplied_amount > 0,
        )
        excluded = [str(value) for value in exclude]
        if excluded:
            query = query.filter(models.Payment.id.notin_(excluded))
        return query.order_by(
            models.Payment.paid_on.asc(),
            models.Payment.created_at.asc(),
            models.Payment.id.asc(),
        ).all()

    @classmethod
    def available(cls, db: Session, client_id: str, *, exclude: Iterable[str] = ()) -> Decimal:
        payments = cls.sources(db, client_id, exclude=exclude)
        return sum((normalize_amount(payment.unapplied_amount) for payment in payments), ZERO)

    @staticmethod
    def received(db: Session, payment: models.Payment) -> list[models.PaymentCreditTransfer]:
        return (
            db.query(models.PaymentCreditTransfer)
            .filter(models.PaymentCreditTransfer.target_payment_id == str(payment.id))
            .order_by(models.PaymentCreditTransfer.created_at.desc())
            .all()
        )

    @staticmethod
    def given(db: Session, payment: models.Payment) -> list[models.PaymentCreditTransfer]:
        return (
            db.query(models.PaymentCreditTransfer)
            .filter(models.PaymentCreditTransfer.source_payment_id == str(payment.id))
            .all()
        )

    @classmethod
    def draw(
        cls,
        db: Session,
        target: models.Payment,
        amount: Decimal,
        *,
        exclude: Iterable[str] = (),
    ) -> list[models.PaymentCreditTransfer]:
        """Move ``amount`` from the oldest remainders onto ``target``."""

        needed = normalize_amount(amount)
        db.flush()
        transfers: list[models.PaymentCreditTransfer] = []
        for source in cls.sources(db, target.client_id, exclude={str(target.id), *exclude}):
            if needed <= ZERO:
                break
            part = min(normalize_amount(source.unapplied_amount), needed)
            source.unapplied_amount = normalize_amount(source.unapplied_amount) - part
            transfer = models.PaymentCreditTransfer(
                client_id=target.client_id,
                source_payment_id=source.id,
                target_payment_id=target.id,
                amount=part,
            )
            db.add(transfer)
            transfers.append(transfer)
            needed -= part
        if needed > ZERO:
            raise ConcurrentUpdateError("El crédito disponible cambió mientras se aplicaba el pago.")
        db.flush()
        if transfers:
            LOGGER.info(
                "Payment credit drawn",
                extra={
                    "client_id": target.client_id,
                    "payment_id": target.id,
                    "amount": str(normalize_amount(amount)),
                    "sources": [transfer.source_payment_id for transfer in transfers],
                },
            )
        return transfers

    @classmethod
    def give_back(
        cls, db: Session, payment: models.Payment, limit: Decimal | None = None
    ) -> Decimal:
        """Return credit ``payment`` received to its sources, newest transfer first.

        With ``limit`` at most that much is returned. Returns the amount handed
        back.
        """

        returned = ZERO
        for transfer in cls.received(db, payment):
            if limit is not None and returned >= limit:
                break
            amount = normalize_amount(transfer.amount)
            part = amount if limit is None else min(amount, normalize_amount(limit) - returned)
            source = db.get(models.Payment, transfer.source_payment_id)
            source.unapplied_amount = normalize_amount(source.unapplied_amount) + part
            if part == amount:
                db.delete(transfer)
            else:
                transfer.amount = amount - part
            returned += part
        db.flush()
        return returned
