"""Read-only account views built from stored charges and payments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from .. import models
from .account_state import AccountState, PeriodStatus, derive_account_state, period_statuses
from .amounts import ZERO, normalize_amount
from .ledger import ChargeLedgerService


@dataclass(frozen=True)
class Statement:
    client: models.Client
    profile: models.BillingProfile
    state: AccountState
    charges: list[models.Charge]
    payments: list[models.Payment]
    generated_on: date


class AccountStateService:
    """Runs the pure account derivations over a client's stored ledger.

    Nothing here takes locks or writes.
    """

    @staticmethod
    def credit_amount(db: Session, client_id: str) -> Decimal:
        total = (
            db.query(func.coalesce(func.sum(models.Payment.unapplied_amount), 0))
            .filter(models.Payment.client_id == str(client_id))
            .scalar()
        )
        return normalize_amount(total or ZERO)

    @classmethod
    def account_state(
        cls, db: Session, client_id: str, *, today: Optional[date] = None
    ) -> AccountState:
        profile = ChargeLedgerService.get_profile(db, client_id)
        charges = ChargeLedgerService.charges_for_client(db, profile.client_id)
        return derive_account_state(
            charges,
            profile.billing_day,
            today=today,
            credit_amount=cls.credit_amount(db, profile.client_id),
        )

    @staticmethod
    def period_statuses(
        db: Session,
        client_id: str,
        *,
        as_of: Optional[date] = None,
        newest_first: bool = True,
    ) -> list[PeriodStatus]:
        profile = ChargeLedgerService.get_profile(db, client_id)
        charges = ChargeLedgerService.charges_for_client(db, profile.client_id)
        return period_statuses(
            charges,
            subscription_start=profile.first_billing_date,
            billing_day=profile.billing_day,
            as_of=as_of,
            newest_first=newest_first,
        )

    @classmethod
    def statement(cls, db: Session, client_id: str, *, today: Optional[date] = None) -> Statement:
        client = ChargeLedgerService.get_client(db, client_id)
        profile = ChargeLedgerService.get_profile(db, client.id)
        charges = ChargeLedgerService.charges_for_client(db, client.id)
        payments = (
            db.query(models.Payment)
            .options(selectinload(models.Payment.charges))
            .filter(models.Payment.client_id == client.id)
            .order_by(models.Payment.paid_on.asc(), models.Payment.created_at.asc())
            .all()
        )
        state = derive_account_state(
            charges,
            profile.billing_day,
            today=today,
            credit_amount=cls.credit_amount(db, client.id),
        )
        return Statement(
            client=client,
            profile=profile,
            state=state,
            charges=charges,
            payments=payments,
            generated_on=today or date.today(),
        )
