"""Business logic for billing profiles and the charge ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import read_int_env
from .amounts import ZERO, normalize_amount, require_non_negative, require_positive
from .audit import AuditTrail, charge_snapshot
from .balance import BalanceKeeper, ledger_transaction, lock_billing_profile
from .billing_periods import BillingPeriod, PeriodRange
from .credit import CreditPool
from .errors import (
    DuplicatePeriodChargeError,
    LedgerConsistencyError,
    LedgerError,
    LedgerNotFoundError,
    LedgerValidationError,
)
from .observability import ObservabilityService
from .proration import calculate_initial_total, calculate_proration, clamp_billing_day

LOGGER = logging.getLogger(__name__)

DEFAULT_BILLING_DAY_ENV = "DEFAULT_BILLING_DAY"
DEFAULT_BILLING_DAY = 10

INSTALLATION_DESCRIPTION = "Costo de instalación"
PRORATION_DESCRIPTION = "Prorrateo inicial"
ADDITIONAL_DESCRIPTION = "Cargos adicionales"


@dataclass
class BatchGenerationReport:
    """Outcome of a batch run; each client was its own unit of work."""

    period: BillingPeriod
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


@dataclass
class ChargeGenerationResult:
    created: list[models.Charge]
    existing_periods: list[BillingPeriod]


def default_billing_day() -> int:
    return clamp_billing_day(read_int_env(DEFAULT_BILLING_DAY_ENV, DEFAULT_BILLING_DAY) or 1)


class ChargeLedgerService:
    """Operations that create, edit and remove charges for a client."""

    # reads

    @staticmethod
    def get_client(db: Session, client_id: str) -> models.Client:
        client = db.get(models.Client, str(client_id))
        if client is None:
            raise LedgerNotFoundError("Cliente no encontrado.")
        return client

    @staticmethod
    def get_profile(db: Session, client_id: str) -> models.BillingProfile:
        profile = (
            db.query(models.BillingProfile)
            .filter(models.BillingProfile.client_id == str(client_id))
            .first()
        )
        if profile is None:
            raise LedgerNotFoundError("El cliente no tiene perfil de facturación.")
        return profile

    @staticmethod
    def get_charge(db: Session, charge_id: str) -> models.Charge:
        charge = db.get(models.Charge, str(charge_id))
        if charge is None:
            raise LedgerNotFoundError("Cargo no encontrado.")
        return charge

    @staticmethod
    def list_charges(
        db: Session,
        *,
        client_id: Optional[str] = None,
        status: Optional[models.ChargeStatus] = None,
        kind: Optional[models.ChargeKind] = None,
        period_key: Optional[str] = None,
        payment_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[Iterable[models.Charge], int]:
        query = db.query(models.Charge)
        if client_id:
            query = query.filter(models.Charge.client_id == str(client_id))
        if status:
            query = query.filter(models.Charge.status == status)
        if kind:
            query = query.filter(models.Charge.kind == kind)
        if period_key:
            period = BillingPeriod.from_key(period_key)
            query = query.filter(
                models.Charge.period_year == period.year,
                models.Charge.period_month == period.month,
            )
        if payment_id:
            query = query.filter(models.Charge.payment_id == str(payment_id))

        total = query.count()
        items = (
            query.order_by(
                models.Charge.period_year.desc(),
                models.Charge.period_month.desc(),
                models.Charge.created_at.desc(),
            )
            .offset(max(skip, 0))
            .limit(max(limit, 1))
            .all()
        )
        return items, total

    @staticmethod
    def charges_for_client(db: Session, client_id: str) -> list[models.Charge]:
        return (
            db.query(models.Charge)
            .filter(models.Charge.client_id == str(client_id))
            .order_by(models.Charge.created_at.asc())
            .all()
        )

    # onboarding

    @staticmethod
    def preview_proration(
        installation_date: date,
        billing_day: int,
        monthly_fee: Decimal | float | str,
        installation_cost: Decimal | float | str = ZERO,
        additional_charges: Decimal | float | str = ZERO,
    ) -> schemas.ProrationRead:
        result = calculate_proration(installation_date, billing_day, monthly_fee)
        return schemas.ProrationRead(
            prorated_amount=result.prorated_amount,
            days_charged=result.days_charged,
            first_billing_date=result.first_billing_date,
            days_in_month=result.days_in_month,
            installation_cost=require_non_negative(installation_cost, "installation_cost"),
            additional_charges=require_non_negative(additional_charges, "additional_charges"),
            total_initial=calculate_initial_total(
                result.prorated_amount, installation_cost, additional_charges
            ),
        )

    @classmethod
    def onboard_client(
        cls, db: Session, client_id: str, data: schemas.BillingProfileCreate
    ) -> models.BillingProfile:
        """Create the billing profile and the installation-time charges.

        The resulting balance equals the initial total: proration plus
        installation cost plus additional charges.
        """

        client = cls.get_client(db, client_id)
        billing_day = data.billing_day or default_billing_day()
        fee = require_non_negative(data.monthly_fee, "monthly_fee")
        installation_cost = require_non_negative(data.installation_cost, "installation_cost")
        additional = require_non_negative(data.additional_charges, "additional_charges")
        proration = calculate_proration(data.installation_date, billing_day, fee)
        prorated_amount = (
            require_non_negative(data.prorated_amount, "prorated_amount")
            if data.prorated_amount is not None
            else proration.prorated_amount
        )

        with ObservabilityService.timed_event(
            db, "billing.onboarded", tags={"client_id": client.id}
        ):
            with ledger_transaction(db, "onboard_client", client_id=client.id):
                existing = (
                    db.query(models.BillingProfile.id)
                    .filter(models.BillingProfile.client_id == client.id)
                    .first()
                )
                if existing is not None:
                    raise LedgerConsistencyError(
                        "El cliente ya tiene un perfil de facturación."
                    )

                profile = models.BillingProfile(
                    client_id=client.id,
                    monthly_fee=fee,
                    billing_day=billing_day,
                    installation_date=data.installation_date,
                    first_billing_date=proration.first_billing_date,
                    installation_cost=installation_cost,
                    prorated_amount=prorated_amount,
                    additional_charges=additional,
                    additional_charges_notes=data.additional_charges_notes,
                    balance=ZERO,
                )
                db.add(profile)
                db.flush()

                initial_charges = [
                    (models.ChargeKind.INSTALLATION, INSTALLATION_DESCRIPTION,
                     installation_cost, data.installation_date),
                    (models.ChargeKind.PRORATION, PRORATION_DESCRIPTION,
                     prorated_amount, proration.first_billing_date),
                    (models.ChargeKind.ADDITIONAL,
                     (data.additional_charges_notes or "").strip() or ADDITIONAL_DESCRIPTION,
                     additional, data.installation_date),
                ]
                total = ZERO
                for kind, description, amount, due_date in initial_charges:
                    if amount <= 0:
                        continue
                    cls.create_charge(
                        db,
                        client_id=client.id,
                        kind=kind,
                        description=description,
                        amount=amount,
                        due_date=due_date,
                        actor=data.recorded_by,
                    )
                    total += amount

                BalanceKeeper.apply_delta(db, profile, total)
                AuditTrail.record(
                    db,
                    client_id=client.id,
                    entity=models.AuditEntity.BILLING_PROFILE,
                    entity_id=profile.id,
                    action=models.AuditAction.CREATED,
                    actor=data.recorded_by,
                    snapshot={
                        "monthly_fee": str(fee),
                        "billing_day": billing_day,
                        "installation_date": data.installation_date.isoformat(),
                        "first_billing_date": proration.first_billing_date.isoformat(),
                        "initial_total": str(normalize_amount(total)),
                    },
                )

        db.refresh(profile)
        LOGGER.info(
            "Client onboarded with initial balance %s",
            profile.balance,
            extra={"client_id": client.id, "first_billing_date": str(profile.first_billing_date)},
        )
        return profile

    @classmethod
    def update_billing_profile(
        cls, db: Session, client_id: str, data: schemas.BillingProfileUpdate
    ) -> models.BillingProfile:
        """Change billing day or plan fee. Existing charges keep their terms."""

        with ObservabilityService.timed_event(
            db, "billing.profile_updated", tags={"client_id": client_id}
        ):
            with ledger_transaction(db, "update_billing_profile", client_id=client_id):
                profile = lock_billing_profile(db, client_id)
                changes = {}
                if data.billing_day is not None:
                    changes["billing_day"] = (profile.billing_day, data.billing_day)
                    profile.billing_day = data.billing_day
                if data.monthly_fee is not None:
                    fee = require_non_negative(data.monthly_fee, "monthly_fee")
                    changes["monthly_fee"] = (normalize_amount(profile.monthly_fee), fee)
                    profile.monthly_fee = fee
                AuditTrail.record_changes(
                    db,
                    client_id=profile.client_id,
                    entity=models.AuditEntity.BILLING_PROFILE,
                    entity_id=profile.id,
                    changes=changes,
                    actor=data.recorded_by,
                )
                BalanceKeeper.apply_delta(db, profile, ZERO)

        db.refresh(profile)
        LOGGER.info(
            "Billing profile updated",
            extra={"client_id": profile.client_id, "fields": sorted(changes)},
        )
        return profile

    # charge primitives

    @staticmethod
    def create_charge(
        db: Session,
        *,
        client_id: str,
        kind: models.ChargeKind,
        description: str,
        amount: Decimal,
        due_date: Optional[date] = None,
        period: Optional[BillingPeriod] = None,
        catalog_item_id: Optional[str] = None,
        notes: Optional[str] = None,
        is_advance: bool = False,
        actor: Optional[str] = None,
    ) -> models.Charge:
        charge = models.Charge(
            client_id=str(client_id),
            kind=kind,
            period_year=period.year if period else None,
            period_month=period.month if period else None,
            description=description,
            amount=require_positive(amount),
            status=models.ChargeStatus.PENDING,
            due_date=due_date,
            is_advance=is_advance,
            catalog_item_id=catalog_item_id,
            notes=notes,
            created_by=actor,
        )
        db.add(charge)
        db.flush()
        AuditTrail.record(
            db,
            client_id=charge.client_id,
            entity=models.AuditEntity.CHARGE,
            entity_id=charge.id,
            action=models.AuditAction.CREATED,
            actor=actor,
            snapshot=charge_snapshot(charge),
        )
        return charge

    @staticmethod
    def mark_paid(charge: models.Charge, payment: models.Payment, paid_on: date) -> None:
        """Flag a charge as covered by ``payment``. Balance is handled by the caller."""

        if charge.status == models.ChargeStatus.PAID:
            raise LedgerConsistencyError(f"El cargo {charge.description} ya está pagado.")
        charge.status = models.ChargeStatus.PAID
        charge.payment = payment
        charge.payment_id = payment.id
        charge.paid_date = paid_on

    @staticmethod
    def mark_pending(charge: models.Charge) -> None:
        charge.status = models.ChargeStatus.PENDING
        charge.payment = None
        charge.payment_id = None
        charge.paid_date = None

    # recurring generation

    @staticmethod
    def _existing_periods(db: Session, client_id: str) -> set[BillingPeriod]:
        rows = (
            db.query(models.Charge.period_year, models.Charge.period_month)
            .filter(
                models.Charge.client_id == str(client_id),
                models.Charge.period_year.isnot(None),
            )
            .all()
        )
        return {BillingPeriod(year=year, month=month) for year, month in rows}

    @classmethod
    def _generate(
        cls,
        db: Session,
        client_id: str,
        *,
        period: Optional[BillingPeriod],
        as_of: Optional[date],
        actor: Optional[str],
    ) -> ChargeGenerationResult:
        with ledger_transaction(db, "generate_missing_charges", client_id=client_id):
            profile = lock_billing_profile(db, client_id)
            first_period = BillingPeriod.from_date(profile.first_billing_date)
            if period is not None:
                if period < first_period:
                    raise LedgerValidationError(
                        f"El periodo {period.label} es anterior al inicio de la facturación "
                        f"({first_period.label})."
                    )
                targets: Sequence[BillingPeriod] = [period]
            else:
                last = BillingPeriod.from_date(as_of or date.today())
                targets = list(PeriodRange(first_period, last)) if last >= first_period else []

            existing = cls._existing_periods(db, profile.client_id)
            fee = normalize_amount(profile.monthly_fee)
            created: list[models.Charge] = []
            already: list[BillingPeriod] = []
            for target in targets:
                if target in existing:
                    already.append(target)
                    continue
                if fee <= 0:
                    continue
                created.append(
                    cls.create_charge(
                        db,
                        client_id=profile.client_id,
                        kind=models.ChargeKind.RECURRING,
                        description=target.charge_description(),
                        amount=fee,
                        due_date=target.due_date(profile.billing_day),
                        period=target,
                        actor=actor,
                    )
                )
            BalanceKeeper.apply_delta(
                db, profile, sum((Decimal(c.amount) for c in created), ZERO)
            )
        return ChargeGenerationResult(created=created, existing_periods=already)

    @classmethod
    def _generate_idempotent(
        cls,
        db: Session,
        client_id: str,
        *,
        period: Optional[BillingPeriod] = None,
        as_of: Optional[date] = None,
        actor: Optional[str] = None,
    ) -> ChargeGenerationResult:
        try:
            return cls._generate(db, client_id, period=period, as_of=as_of, actor=actor)
        except DuplicatePeriodChargeError:
            # a concurrent run inserted the period first; the retry sees it
            LOGGER.info(
                "Recurring charge created concurrently; re-reading periods",
                extra={"client_id": client_id, "period": str(period) if period else None},
            )
            return cls._generate(db, client_id, period=period, as_of=as_of, actor=actor)

    @classmethod
    def generate_missing_charges(
        cls,
        db: Session,
        client_id: str,
        period: BillingPeriod,
        *,
        actor: Optional[str] = None,
    ) -> ChargeGenerationResult:
        """Create the recurring charge for ``period`` unless it already exists."""

        with ObservabilityService.timed_event(
            db, "charges.generated", tags={"client_id": client_id, "period": period.key}
        ):
            result = cls._generate_idempotent(db, client_id, period=period, actor=actor)
        if result.created:
            LOGGER.info(
                "Generated recurring charge for %s",
                period.key,
                extra={"client_id": client_id, "period": period.key},
            )
        return result

    @classmethod
    def generate_outstanding_charges(
        cls,
        db: Session,
        client_id: str,
        *,
        as_of: Optional[date] = None,
        actor: Optional[str] = None,
    ) -> ChargeGenerationResult:
        """Create every missing recurring charge from billing start through ``as_of``."""

        with ObservabilityService.timed_event(
            db, "charges.generated", tags={"client_id": client_id, "as_of": as_of or date.today()}
        ):
            result = cls._generate_idempotent(db, client_id, as_of=as_of, actor=actor)
        LOGGER.info(
            "Generated %s outstanding recurring charges",
            len(result.created),
            extra={"client_id": client_id, "as_of": str(as_of) if as_of else None},
        )
        return result

    @classmethod
    def generate_charges_for_period(
        cls,
        db: Session,
        period: Optional[BillingPeriod] = None,
        *,
        actor: Optional[str] = None,
    ) -> BatchGenerationReport:
        """User-triggered batch over every client with a billing profile.

        Each client commits or rolls back on its own; a failure is reported
        and the run continues with the next client.
        """

        target = period or BillingPeriod.from_date(date.today())
        report = BatchGenerationReport(period=target)
        profiles = (
            db.query(models.BillingProfile.client_id, models.BillingProfile.first_billing_date)
            .order_by(models.BillingProfile.created_at.asc())
            .all()
        )

        with ObservabilityService.timed_event(
            db, "charges.batch_generated", tags={"period": target.key}
        ):
            for client_id, first_billing in profiles:
                client_id = str(client_id)
                if target < BillingPeriod.from_date(first_billing):
                    report.skipped.append(client_id)
                    continue
                try:
                    result = cls._generate_idempotent(db, client_id, period=target, actor=actor)
                except (LedgerError, LedgerValidationError, LedgerNotFoundError) as exc:
                    LOGGER.warning(
                        "Charge generation failed for client",
                        extra={"client_id": client_id, "period": target.key, "error": str(exc)},
                    )
                    report.failed[client_id] = str(exc)
                    continue
                if result.created:
                    report.created.append(client_id)
                else:
                    report.skipped.append(client_id)

        LOGGER.info(
            "Batch charge generation finished for %s",
            target.key,
            extra={
                "period": target.key,
                "created": len(report.created),
                "skipped": len(report.skipped),
                "failed": len(report.failed),
            },
        )
        return report

    # manual charges

    @classmethod
    def add_ad_hoc_charge(cls, db: Session, data: schemas.ChargeCreate) -> models.Charge:
        """Create a pending charge not tied to a period, optionally from the catalog."""

        amount = data.amount
        description = (data.description or "").strip()
        catalog_item_id = None
        if data.catalog_item_id:
            item = db.get(models.ChargeCatalogItem, str(data.catalog_item_id))
            if item is None:
                raise LedgerNotFoundError("Concepto de catálogo no encontrado.")
            if not item.is_active:
                raise LedgerValidationError("El concepto de catálogo está inactivo.")
            catalog_item_id = item.id
            if amount is None:
                amount = item.default_amount
            description = description or item.name
        amount = require_positive(amount)
        if not description:
            raise LedgerValidationError("La descripción del cargo es obligatoria.")

        with ObservabilityService.timed_event(
            db, "charges.created", tags={"client_id": data.client_id}
        ):
            with ledger_transaction(db, "add_ad_hoc_charge", client_id=data.client_id):
                profile = lock_billing_profile(db, data.client_id)
                charge = cls.create_charge(
                    db,
                    client_id=profile.client_id,
                    kind=models.ChargeKind.AD_HOC,
                    description=description,
                    amount=amount,
                    due_date=data.due_date,
                    catalog_item_id=catalog_item_id,
                    notes=data.notes,
                    actor=data.recorded_by,
                )
                BalanceKeeper.apply_delta(db, profile, amount)

        db.refresh(charge)
        LOGGER.info(
            "Ad-hoc charge added",
            extra={"client_id": charge.client_id, "charge_id": charge.id, "amount": str(amount)},
        )
        return charge

    @staticmethod
    def _lock_charge(db: Session, charge_id: str) -> Tuple[models.BillingProfile, models.Charge]:
        """Lock the owning profile, then re-read the charge under that lock."""

        client_id = (
            db.query(models.Charge.client_id)
            .filter(models.Charge.id == str(charge_id))
            .scalar()
        )
        if client_id is None:
            raise LedgerNotFoundError("Cargo no encontrado.")
        profile = lock_billing_profile(db, client_id)
        charge = (
            db.query(models.Charge)
            .filter(models.Charge.id == str(charge_id))
            .populate_existing()
            .one_or_none()
        )
        if charge is None:
            raise LedgerNotFoundError("Cargo no encontrado.")
        return profile, charge

    @classmethod
    def edit_charge(
        cls, db: Session, charge_id: str, data: schemas.ChargeUpdate
    ) -> models.Charge:
        updates = data.model_dump(exclude_unset=True)
        actor = updates.pop("recorded_by", None)
        if "description" in updates and not (updates["description"] or "").strip():
            raise LedgerValidationError("La descripción del cargo es obligatoria.")

        with ObservabilityService.timed_event(db, "charges.edited", tags={"charge_id": charge_id}):
            with ledger_transaction(db, "edit_charge", charge_id=charge_id):
                profile, charge = cls._lock_charge(db, charge_id)
                previous_amount = normalize_amount(charge.amount)
                delta = ZERO
                changes = {}

                if updates.get("amount") is not None:
                    new_amount = require_positive(updates["amount"])
                    if new_amount != previous_amount:
                        if charge.status == models.ChargeStatus.PAID:
                            raise LedgerConsistencyError(
                                "No se puede cambiar el monto de un cargo pagado; "
                                "elimina o ajusta primero el pago."
                            )
                        delta = new_amount - previous_amount
                        changes["amount"] = (previous_amount, new_amount)
                        charge.amount = new_amount
                if updates.get("description"):
                    changes["description"] = (charge.description, updates["description"].strip())
                    charge.description = updates["description"].strip()
                for name in ("due_date", "notes"):
                    if name in updates:
                        changes[name] = (getattr(charge, name), updates[name])
                        setattr(charge, name, updates[name])

                AuditTrail.record_changes(
                    db,
                    client_id=charge.client_id,
                    entity=models.AuditEntity.CHARGE,
                    entity_id=charge.id,
                    changes=changes,
                    actor=actor,
                )
                BalanceKeeper.apply_delta(db, profile, delta)

        db.refresh(charge)
        LOGGER.info(
            "Charge edited",
            extra={"charge_id": charge.id, "client_id": charge.client_id, "delta": str(delta)},
        )
        return charge

    @classmethod
    def delete_charge(
        cls, db: Session, charge_id: str, *, actor: Optional[str] = None
    ) -> None:
        """Remove a charge.

        A pending charge leaves the balance. A paid charge does not touch the
        balance; its amount returns to the paying payment as unapplied, after
        any credit that payment drew has been handed back to its sources.
        """

        with ObservabilityService.timed_event(db, "charges.deleted", tags={"charge_id": charge_id}):
            with ledger_transaction(db, "delete_charge", charge_id=charge_id):
                profile, charge = cls._lock_charge(db, charge_id)
                amount = normalize_amount(charge.amount)
                AuditTrail.record(
                    db,
                    client_id=charge.client_id,
                    entity=models.AuditEntity.CHARGE,
                    entity_id=charge.id,
                    action=models.AuditAction.DELETED,
                    actor=actor,
                    old_value=amount,
                    field_name="amount",
                    snapshot=charge_snapshot(charge),
                )

                delta = ZERO
                if charge.status == models.ChargeStatus.PENDING:
                    delta = -amount
                elif charge.payment is not None:
                    payment = charge.payment
                    # borrowed credit goes back to its source payments before the rest
                    returned = CreditPool.give_back(db, payment, limit=amount)
                    previous_unapplied = normalize_amount(payment.unapplied_amount)
                    payment.unapplied_amount = previous_unapplied + amount - returned
                    AuditTrail.record(
                        db,
                        client_id=payment.client_id,
                        entity=models.AuditEntity.PAYMENT,
                        entity_id=payment.id,
                        action=models.AuditAction.UPDATED,
                        actor=actor,
                        field_name="unapplied_amount",
                        old_value=previous_unapplied,
                        new_value=payment.unapplied_amount,
                    )
                client_id = charge.client_id
                db.delete(charge)
                BalanceKeeper.apply_delta(db, profile, delta)

        LOGGER.info(
            "Charge deleted",
            extra={"charge_id": str(charge_id), "client_id": client_id, "delta": str(delta)},
        )
