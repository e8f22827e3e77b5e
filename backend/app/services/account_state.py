"""Read-only derivations of a client's account state from its charges."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from .. import models
from .amounts import ZERO, normalize_amount
from .billing_periods import BillingPeriod, PeriodRange
from .proration import next_due_date_after


class AccountStanding(str, enum.Enum):
    """Classification shown for a client's account."""

    UP_TO_DATE = "up_to_date"
    CURRENT = "current"
    IN_DEBT = "in_debt"


class PeriodState(str, enum.Enum):
    """Status of a single billing period."""

    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"
    MISSING = "missing"


@dataclass(frozen=True)
class AccountState:
    pending_total: Decimal
    display_balance: Decimal
    standing: AccountStanding
    has_advance: bool
    next_due_date: date
    covered_until: Optional[str]
    covered_until_period: Optional[str]
    pending_count: int
    credit_amount: Decimal = ZERO


@dataclass(frozen=True)
class PeriodStatus:
    period: BillingPeriod
    due_date: date
    days_until_due: int
    status: PeriodState
    charge_id: Optional[str] = None
    amount: Optional[Decimal] = None
    is_advance: bool = False


@dataclass
class _ChargeScan:
    pending_total: Decimal = ZERO
    pending_count: int = 0
    latest_paid_period: Optional[BillingPeriod] = None
    paid_periods: list[BillingPeriod] = field(default_factory=list)


def _is_paid(charge: models.Charge) -> bool:
    return charge.status == models.ChargeStatus.PAID


def pending_total(charges: Iterable[models.Charge]) -> Decimal:
    """Authoritative outstanding amount: the sum of pending charges."""

    return normalize_amount(
        sum((Decimal(c.amount) for c in charges if not _is_paid(c)), ZERO)
    )


def _scan(charges: Iterable[models.Charge]) -> _ChargeScan:
    scan = _ChargeScan()
    for charge in charges:
        if not _is_paid(charge):
            scan.pending_total += Decimal(charge.amount)
            scan.pending_count += 1
            continue
        period = charge.period
        if period is None:
            continue
        scan.paid_periods.append(period)
        if scan.latest_paid_period is None or period > scan.latest_paid_period:
            scan.latest_paid_period = period
    scan.pending_total = normalize_amount(scan.pending_total)
    return scan


def derive_account_state(
    charges: Iterable[models.Charge],
    billing_day: int,
    *,
    today: Optional[date] = None,
    credit_amount: Decimal | None = None,
) -> AccountState:
    """Compute balance, classification and next due date.

    Pure: nothing is written and the result depends only on the arguments.
    """

    reference = today or date.today()
    current_period = BillingPeriod.from_date(reference)
    scan = _scan(charges)

    has_advance = any(period > current_period for period in scan.paid_periods)
    if scan.pending_total > 0:
        standing = AccountStanding.IN_DEBT
    elif has_advance:
        standing = AccountStanding.UP_TO_DATE
    else:
        standing = AccountStanding.CURRENT

    display_balance = ZERO if standing == AccountStanding.UP_TO_DATE else scan.pending_total

    latest = scan.latest_paid_period
    if latest is not None:
        next_due = latest.next().due_date(billing_day)
    else:
        next_due = next_due_date_after(reference, billing_day)

    return AccountState(
        pending_total=scan.pending_total,
        display_balance=display_balance,
        standing=standing,
        has_advance=has_advance,
        next_due_date=next_due,
        covered_until=latest.display_name if latest else None,
        covered_until_period=latest.key if latest else None,
        pending_count=scan.pending_count,
        credit_amount=normalize_amount(credit_amount or ZERO),
    )


def period_statuses(
    charges: Sequence[models.Charge],
    *,
    subscription_start: date,
    billing_day: int,
    as_of: Optional[date] = None,
    newest_first: bool = True,
) -> list[PeriodStatus]:
    """Per-period view from the first billing cycle through ``as_of``.

    Periods paid in advance beyond ``as_of`` are included as well.
    """

    reference = as_of or date.today()
    by_period: dict[BillingPeriod, models.Charge] = {}
    for charge in charges:
        period = charge.period
        if period is not None:
            by_period[period] = charge

    first = BillingPeriod.from_date(subscription_start)
    last = BillingPeriod.from_date(reference)
    if by_period:
        last = max(last, max(by_period))
    periods = PeriodRange(first, last)

    statuses: list[PeriodStatus] = []
    for period in (reversed(periods) if newest_first else periods):
        due = period.due_date(billing_day)
        charge = by_period.get(period)
        if charge is None:
            state = PeriodState.MISSING
        elif _is_paid(charge):
            state = PeriodState.PAID
        elif due < reference:
            state = PeriodState.OVERDUE
        else:
            state = PeriodState.PENDING
        statuses.append(
            PeriodStatus(
                period=period,
                due_date=due,
                days_until_due=(due - reference).days,
                status=state,
                charge_id=str(charge.id) if charge is not None and charge.id else None,
                amount=normalize_amount(charge.amount) if charge is not None else None,
                is_advance=bool(charge.is_advance) if charge is not None else False,
            )
        )
    return statuses
