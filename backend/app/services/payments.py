"""Business logic for payment operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Tuple

from sqlalchemy.orm import Session, selectinload

from .. import models, schemas
from .amounts import ZERO, normalize_amount, require_non_negative, require_positive
from .audit import AuditTrail, charge_snapshot, payment_snapshot
from .balance import BalanceKeeper, ledger_transaction, lock_billing_profile, pending_total
from .billing_periods import BillingPeriod
from .credit import CreditPool
from .errors import LedgerNotFoundError, LedgerValidationError
from .ledger import ChargeLedgerService
from .observability import ObservabilityService

LOGGER = logging.getLogger(__name__)


def _naive(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.min
    return value.replace(tzinfo=None)


def allocation_order_key(charge: models.Charge) -> tuple:
    """Oldest period first; non-recurring charges use their due or creation month."""

    period = charge.period
    if period is None:
        anchor = charge.due_date or _naive(charge.created_at).date()
        period = BillingPeriod.from_date(anchor)
    return (period, _naive(charge.created_at), str(charge.id))


@dataclass
class AllocationPlan:
    """How a payment amount is distributed before anything is written."""

    amount: Decimal
    covered: list[models.Charge] = field(default_factory=list)
    advance_periods: list[BillingPeriod] = field(default_factory=list)
    advance_amount: Decimal = ZERO
    allocated_to_pending: Decimal = ZERO
    credit_applied: Decimal = ZERO
    unapplied_amount: Decimal = ZERO


def plan_allocation(
    charges: Sequence[models.Charge],
    amount: Decimal | float | str,
    *,
    credit: Decimal | float | str = ZERO,
    monthly_fee: Decimal | float | str = ZERO,
    first_advance_period: Optional[BillingPeriod] = None,
    allow_advance: bool = True,
) -> AllocationPlan:
    """Greedy oldest-first allocation without splitting charges.

    ``credit`` is unapplied money from earlier payments pooled with
    ``amount``. A charge the remaining money cannot fully cover stays pending
    and allocation moves on to the next one, until nothing remains. Once
    every charge is covered, whole monthly fees left over become advance
    periods starting at ``first_advance_period``. The payment's own money is
    spent before the credit; what is left of it is unapplied.
    """

    total = require_positive(amount)
    pooled = total + require_non_negative(credit, "credit")
    plan = AllocationPlan(amount=total)
    remaining = pooled
    ordered = sorted(charges, key=allocation_order_key)
    for charge in ordered:
        if remaining <= ZERO:
            break
        charge_amount = normalize_amount(charge.amount)
        if charge_amount > remaining:
            continue
        plan.covered.append(charge)
        remaining -= charge_amount
    plan.allocated_to_pending = pooled - remaining

    fee = normalize_amount(monthly_fee)
    all_covered = len(plan.covered) == len(ordered)
    if allow_advance and all_covered and fee > 0 and first_advance_period is not None:
        months = int(remaining // fee)
        plan.advance_periods = [first_advance_period.shift(offset) for offset in range(months)]
        plan.advance_amount = fee * months
        remaining -= plan.advance_amount

    spent = pooled - remaining
    plan.credit_applied = max(spent - total, ZERO)
    plan.unapplied_amount = normalize_amount(total + plan.credit_applied - spent)
    return plan


def payment_order_key(payment: models.Payment) -> tuple:
    return (payment.paid_on, _naive(payment.created_at), str(payment.id))


@dataclass
class PaymentRecordResult:
    """Result from recording a payment including its allocation summary."""

    payment: models.Payment
    summary: schemas.AllocationSummary


class PaymentService:
    """Operations for reading, recording and reversing client payments."""

    @staticmethod
    def list_payments(
        db: Session,
        *,
        client_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        method: Optional[models.PaymentMethod] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[Iterable[models.Payment], int]:
        query = db.query(models.Payment).options(selectinload(models.Payment.charges))

        if client_id:
            query = query.filter(models.Payment.client_id == str(client_id))
        if start_date:
            query = query.filter(models.Payment.paid_on >= start_date)
        if end_date:
            query = query.filter(models.Payment.paid_on <= end_date)
        if method:
            query = query.filter(models.Payment.method == method)
        if min_amount is not None:
            query = query.filter(models.Payment.amount >= min_amount)
        if max_amount is not None:
            query = query.filter(models.Payment.amount <= max_amount)

        total = query.count()
        items = (
            query.order_by(
                models.Payment.paid_on.desc(),
                models.Payment.created_at.desc(),
            )
            .offset(max(skip, 0))
            .limit(max(limit, 1))
            .all()
        )
        return items, total

    @staticmethod
    def get_payment(db: Session, payment_id: str) -> models.Payment:
        payment = db.get(models.Payment, str(payment_id))
        if payment is None:
            raise LedgerNotFoundError("Pago no encontrado.")
        return payment

    # planning

    @staticmethod
    def _pending_charges(db: Session, client_id: str) -> list[models.Charge]:
        return (
            db.query(models.Charge)
            .filter(
                models.Charge.client_id == str(client_id),
                models.Charge.status == models.ChargeStatus.PENDING,
            )
            .populate_existing()
            .all()
        )

    @staticmethod
    def _first_advance_period(
        db: Session, profile: models.BillingProfile, paid_on: date
    ) -> BillingPeriod:
        latest = (
            db.query(models.Charge.period_year, models.Charge.period_month)
            .filter(
                models.Charge.client_id == profile.client_id,
                models.Charge.period_year.isnot(None),
            )
            .order_by(models.Charge.period_year.desc(), models.Charge.period_month.desc())
            .first()
        )
        candidates = [
            BillingPeriod.from_date(paid_on),
            BillingPeriod.from_date(profile.first_billing_date),
        ]
        if latest is not None:
            candidates.append(BillingPeriod(year=latest[0], month=latest[1]).next())
        return max(candidates)

    @classmethod
    def _select_charges(
        cls,
        db: Session,
        client_id: str,
        charge_ids: Optional[Sequence[str]],
    ) -> Tuple[list[models.Charge], bool]:
        """Return the candidate charges and whether they include every pending one."""

        pending = cls._pending_charges(db, client_id)
        if not charge_ids:
            return pending, True

        by_id = {str(charge.id): charge for charge in pending}
        selected = []
        for charge_id in dict.fromkeys(str(value) for value in charge_ids):
            charge = by_id.get(charge_id)
            if charge is None:
                existing = db.get(models.Charge, charge_id)
                if existing is None or str(existing.client_id) != str(client_id):
                    raise LedgerNotFoundError(f"Cargo {charge_id} no encontrado para el cliente.")
                raise LedgerValidationError(f"El cargo {existing.description} ya está pagado.")
            selected.append(charge)
        return selected, len(selected) == len(pending)

    @classmethod
    def _plan(
        cls,
        db: Session,
        profile: models.BillingProfile,
        amount: Decimal,
        paid_on: date,
        charge_ids: Optional[Sequence[str]] = None,
        *,
        exclude: Iterable[str] = (),
    ) -> AllocationPlan:
        # charges and remainders changed earlier in this unit must be visible
        db.flush()
        candidates, includes_all = cls._select_charges(db, profile.client_id, charge_ids)
        return plan_allocation(
            candidates,
            amount,
            credit=CreditPool.available(db, profile.client_id, exclude=exclude),
            monthly_fee=profile.monthly_fee,
            first_advance_period=cls._first_advance_period(db, profile, paid_on),
            allow_advance=includes_all,
        )

    @staticmethod
    def _summary(
        plan: AllocationPlan,
        *,
        previous_balance: Decimal,
        resulting_balance: Decimal,
        advance_charges: Sequence[models.Charge] = (),
        monthly_fee: Decimal = ZERO,
    ) -> schemas.AllocationSummary:
        covered = [
            schemas.AllocatedCharge(
                charge_id=str(charge.id) if charge.id else None,
                description=charge.description,
                period_key=charge.period_key,
                amount=normalize_amount(charge.amount),
            )
            for charge in plan.covered
        ]
        if advance_charges:
            advance = [
                schemas.AllocatedCharge(
                    charge_id=str(charge.id),
                    description=charge.description,
                    period_key=charge.period_key,
                    amount=normalize_amount(charge.amount),
                    is_advance=True,
                )
                for charge in advance_charges
            ]
        else:
            advance = [
                schemas.AllocatedCharge(
                    description=period.charge_description(),
                    period_key=period.key,
                    amount=normalize_amount(monthly_fee),
                    is_advance=True,
                )
                for period in plan.advance_periods
            ]
        return schemas.AllocationSummary(
            amount=plan.amount,
            covered=covered,
            advance=advance,
            allocated_to_pending=plan.allocated_to_pending,
            credit_applied=plan.credit_applied,
            unapplied_amount=plan.unapplied_amount,
            previous_balance=normalize_amount(previous_balance),
            resulting_balance=normalize_amount(resulting_balance),
        )

    @classmethod
    def preview_payment(
        cls,
        db: Session,
        client_id: str,
        amount: Decimal | float | str,
        *,
        paid_on: Optional[date] = None,
        charge_ids: Optional[Sequence[str]] = None,
    ) -> schemas.AllocationSummary:
        """Dry run of :meth:`apply_payment`. Nothing is locked or written."""

        profile = ChargeLedgerService.get_profile(db, client_id)
        plan = cls._plan(db, profile, require_positive(amount), paid_on or date.today(), charge_ids)
        previous = pending_total(db, profile.client_id)
        return cls._summary(
            plan,
            previous_balance=previous,
            resulting_balance=previous - plan.allocated_to_pending,
            monthly_fee=profile.monthly_fee,
        )

    # mutations

    @staticmethod
    def _allocate(
        db: Session,
        profile: models.BillingProfile,
        payment: models.Payment,
        plan: AllocationPlan,
        actor: Optional[str],
        *,
        exclude: Iterable[str] = (),
    ) -> list[models.Charge]:
        if plan.credit_applied > ZERO:
            CreditPool.draw(db, payment, plan.credit_applied, exclude=exclude)

        for charge in plan.covered:
            ChargeLedgerService.mark_paid(charge, payment, payment.paid_on)
            AuditTrail.record(
                db,
                client_id=charge.client_id,
                entity=models.AuditEntity.CHARGE,
                entity_id=charge.id,
                action=models.AuditAction.UPDATED,
                actor=actor,
                field_name="status",
                old_value=models.ChargeStatus.PENDING,
                new_value=models.ChargeStatus.PAID,
            )

        advance_charges = []
        for period in plan.advance_periods:
            charge = ChargeLedgerService.create_charge(
                db,
                client_id=profile.client_id,
                kind=models.ChargeKind.RECURRING,
                description=period.charge_description(),
                amount=normalize_amount(profile.monthly_fee),
                due_date=period.due_date(profile.billing_day),
                period=period,
                is_advance=True,
                actor=actor,
            )
            ChargeLedgerService.mark_paid(charge, payment, payment.paid_on)
            advance_charges.append(charge)

        payment.unapplied_amount = plan.unapplied_amount
        return advance_charges

    @staticmethod
    def _unwind(db: Session, payment: models.Payment, actor: Optional[str]) -> Decimal:
        """Undo a payment's allocation and return the amount that became pending again."""

        restored = ZERO
        for charge in list(payment.charges):
            if charge.is_advance:
                AuditTrail.record(
                    db,
                    client_id=charge.client_id,
                    entity=models.AuditEntity.CHARGE,
                    entity_id=charge.id,
                    action=models.AuditAction.DELETED,
                    actor=actor,
                    snapshot=charge_snapshot(charge),
                )
                payment.charges.remove(charge)
                db.delete(charge)
                continue
            AuditTrail.record(
                db,
                client_id=charge.client_id,
                entity=models.AuditEntity.CHARGE,
                entity_id=charge.id,
                action=models.AuditAction.UPDATED,
                actor=actor,
                field_name="status",
                old_value=charge.status,
                new_value=models.ChargeStatus.PENDING,
            )
            ChargeLedgerService.mark_pending(charge)
            restored += normalize_amount(charge.amount)
        # advance periods must be gone before they can be allocated again
        db.flush()
        return restored

    @classmethod
    def _release(
        cls,
        db: Session,
        payment: models.Payment,
        actor: Optional[str],
        released: dict[str, models.Payment],
    ) -> Decimal:
        """Undo ``payment`` and, first, every later payment that spent its credit.

        Released payments end with no linked charges, no transfers and their
        whole amount unapplied. Returns the amount that became pending again.
        """

        released[str(payment.id)] = payment
        restored = ZERO
        for transfer in CreditPool.given(db, payment):
            target_id = str(transfer.target_payment_id)
            if target_id not in released:
                target = db.get(models.Payment, target_id)
                restored += cls._release(db, target, actor, released)
        restored += cls._unwind(db, payment, actor)
        CreditPool.give_back(db, payment)
        payment.unapplied_amount = normalize_amount(payment.amount)
        return restored

    @classmethod
    def _reapply(
        cls,
        db: Session,
        profile: models.BillingProfile,
        payments: Iterable[models.Payment],
        actor: Optional[str],
    ) -> Decimal:
        """Allocate released payments again, oldest first. Returns the pending amount paid."""

        waiting = {str(payment.id): payment for payment in payments}
        allocated = ZERO
        for payment in sorted(waiting.values(), key=payment_order_key):
            waiting.pop(str(payment.id))
            plan = cls._plan(
                db,
                profile,
                normalize_amount(payment.amount),
                payment.paid_on,
                exclude={str(payment.id), *waiting},
            )
            cls._allocate(db, profile, payment, plan, actor, exclude=waiting)
            allocated += plan.allocated_to_pending
            LOGGER.info(
                "Payment allocation rebuilt",
                extra={"client_id": payment.client_id, "payment_id": payment.id},
            )
        return allocated

    @staticmethod
    def _lock_payment(
        db: Session, payment_id: str
    ) -> Tuple[models.BillingProfile, models.Payment]:
        client_id = (
            db.query(models.Payment.client_id)
            .filter(models.Payment.id == str(payment_id))
            .scalar()
        )
        if client_id is None:
            raise LedgerNotFoundError("Pago no encontrado.")
        profile = lock_billing_profile(db, client_id)
        payment = (
            db.query(models.Payment)
            .filter(models.Payment.id == str(payment_id))
            .populate_existing()
            .one_or_none()
        )
        if payment is None:
            raise LedgerNotFoundError("Pago no encontrado.")
        return profile, payment

    @classmethod
    def apply_payment(cls, db: Session, data: schemas.PaymentCreate) -> PaymentRecordResult:
        """Record a payment and allocate it, with any client credit, oldest first."""

        amount = require_positive(data.amount)
        paid_on = data.paid_on or date.today()

        with ObservabilityService.timed_event(
            db, "payments.applied", tags={"client_id": data.client_id, "method": data.method.value}
        ):
            with ledger_transaction(db, "apply_payment", client_id=data.client_id):
                profile = lock_billing_profile(db, data.client_id)
                previous_balance = normalize_amount(profile.balance)
                plan = cls._plan(db, profile, amount, paid_on, data.charge_ids)

                payment = models.Payment(
                    client_id=profile.client_id,
                    amount=amount,
                    paid_on=paid_on,
                    method=data.method,
                    bank_reference=data.bank_reference,
                    receipt_number=data.receipt_number,
                    payer_name=data.payer_name,
                    notes=data.notes,
                    unapplied_amount=amount,
                    recorded_by=data.recorded_by,
                )
                db.add(payment)
                db.flush()

                advance_charges = cls._allocate(db, profile, payment, plan, data.recorded_by)
                AuditTrail.record(
                    db,
                    client_id=payment.client_id,
                    entity=models.AuditEntity.PAYMENT,
                    entity_id=payment.id,
                    action=models.AuditAction.CREATED,
                    actor=data.recorded_by,
                    snapshot=payment_snapshot(payment),
                )
                resulting_balance = BalanceKeeper.apply_delta(
                    db, profile, -plan.allocated_to_pending
                )
                summary = cls._summary(
                    plan,
                    previous_balance=previous_balance,
                    resulting_balance=resulting_balance,
                    advance_charges=advance_charges,
                )

        db.refresh(payment)
        LOGGER.info(
            "Payment applied",
            extra={
                "client_id": payment.client_id,
                "payment_id": payment.id,
                "amount": str(amount),
                "covered": len(plan.covered),
                "advance_periods": [period.key for period in plan.advance_periods],
                "credit_applied": str(plan.credit_applied),
                "unapplied": str(plan.unapplied_amount),
            },
        )
        return PaymentRecordResult(payment=payment, summary=summary)

    @classmethod
    def delete_payment(
        cls, db: Session, payment_id: str, *, actor: Optional[str] = None
    ) -> None:
        """Reverse a payment exactly and remove it.

        Charges it paid go back to pending, advance charges it created are
        removed and credit it drew returns to the payments it came from.
        Later payments that spent this payment's credit are allocated again
        without it.
        """

        with ObservabilityService.timed_event(
            db, "payments.deleted", tags={"payment_id": payment_id}
        ):
            with ledger_transaction(db, "delete_payment", payment_id=payment_id):
                profile, payment = cls._lock_payment(db, payment_id)
                released: dict[str, models.Payment] = {}
                restored = cls._release(db, payment, actor, released)
                released.pop(str(payment.id))
                AuditTrail.record(
                    db,
                    client_id=payment.client_id,
                    entity=models.AuditEntity.PAYMENT,
                    entity_id=payment.id,
                    action=models.AuditAction.DELETED,
                    actor=actor,
                    old_value=payment.amount,
                    field_name="amount",
                    snapshot=payment_snapshot(payment),
                )
                client_id = payment.client_id
                db.delete(payment)
                db.flush()
                allocated = cls._reapply(db, profile, released.values(), actor)
                BalanceKeeper.apply_delta(db, profile, restored - allocated)

        LOGGER.info(
            "Payment deleted",
            extra={
                "client_id": client_id,
                "payment_id": str(payment_id),
                "restored": str(restored),
                "reallocated": sorted(released),
            },
        )

    @classmethod
    def update_payment(
        cls, db: Session, payment_id: str, data: schemas.PaymentUpdate
    ) -> PaymentRecordResult:
        """Edit payment details; an amount change re-runs the allocation."""

        updates = data.model_dump(exclude_unset=True)
        actor = updates.pop("recorded_by", None)

        with ObservabilityService.timed_event(
            db, "payments.updated", tags={"payment_id": payment_id}
        ):
            with ledger_transaction(db, "update_payment", payment_id=payment_id):
                profile, payment = cls._lock_payment(db, payment_id)
                previous_balance = normalize_amount(profile.balance)
                changes = {}

                for name in ("method", "bank_reference", "receipt_number", "payer_name", "notes"):
                    if name in updates:
                        if name == "method" and updates[name] is None:
                            raise LedgerValidationError("El método de pago es obligatorio.")
                        changes[name] = (getattr(payment, name), updates[name])
                        setattr(payment, name, updates[name])

                if updates.get("paid_on") is not None and updates["paid_on"] != payment.paid_on:
                    changes["paid_on"] = (payment.paid_on, updates["paid_on"])
                    payment.paid_on = updates["paid_on"]
                    for charge in payment.charges:
                        charge.paid_date = payment.paid_on

                new_amount = (
                    require_positive(updates["amount"])
                    if updates.get("amount") is not None
                    else normalize_amount(payment.amount)
                )
                current_amount = normalize_amount(payment.amount)
                if new_amount != current_amount:
                    changes["amount"] = (current_amount, new_amount)
                    released: dict[str, models.Payment] = {}
                    restored = cls._release(db, payment, actor, released)
                    released.pop(str(payment.id))
                    payment.amount = new_amount
                    payment.unapplied_amount = new_amount
                    plan = cls._plan(
                        db,
                        profile,
                        new_amount,
                        payment.paid_on,
                        exclude={str(payment.id), *released},
                    )
                    advance_charges = cls._allocate(
                        db, profile, payment, plan, actor, exclude=released
                    )
                    allocated = plan.allocated_to_pending + cls._reapply(
                        db, profile, released.values(), actor
                    )
                    delta = restored - allocated
                else:
                    covered = [charge for charge in payment.charges if not charge.is_advance]
                    advance_charges = [charge for charge in payment.charges if charge.is_advance]
                    plan = AllocationPlan(
                        amount=current_amount,
                        covered=covered,
                        advance_periods=[charge.period for charge in advance_charges],
                        advance_amount=sum(
                            (normalize_amount(c.amount) for c in advance_charges), ZERO
                        ),
                        allocated_to_pending=sum(
                            (normalize_amount(c.amount) for c in covered), ZERO
                        ),
                        credit_applied=sum(
                            (normalize_amount(t.amount) for t in CreditPool.received(db, payment)),
                            ZERO,
                        ),
                        unapplied_amount=normalize_amount(payment.unapplied_amount),
                    )
                    delta = ZERO

                AuditTrail.record_changes(
                    db,
                    client_id=payment.client_id,
                    entity=models.AuditEntity.PAYMENT,
                    entity_id=payment.id,
                    changes=changes,
                    actor=actor,
                )
                resulting_balance = BalanceKeeper.apply_delta(db, profile, delta)
                summary = cls._summary(
                    plan,
                    previous_balance=previous_balance,
                    resulting_balance=resulting_balance,
                    advance_charges=advance_charges,
                )

        db.refresh(payment)
        LOGGER.info(
            "Payment updated",
            extra={"payment_id": payment.id, "fields": sorted(changes)},
        )
        return PaymentRecordResult(payment=payment, summary=summary)
