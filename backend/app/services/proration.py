"""First-invoice proration and due-date rules."""

from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from .amounts import CENTS, normalize_amount, require_non_negative
from .billing_periods import BillingPeriod

MIN_BILLING_DAY = 1
MAX_BILLING_DAY = 28


@dataclass(frozen=True)
class ProrationResult:
    """Charge for the gap between installation and the first billing date."""

    prorated_amount: Decimal
    days_charged: int
    first_billing_date: date
    days_in_month: int


def clamp_billing_day(billing_day: int) -> int:
    """Clamp a billing day so that every month contains it."""

    return min(max(int(billing_day), MIN_BILLING_DAY), MAX_BILLING_DAY)


def first_billing_date(installation_date: date, billing_day: int) -> date:
    """Return the first regular due date after an installation.

    Installing on or before the billing day bills on that day of the same
    month; installing after it rolls over to the next month.
    """

    day = clamp_billing_day(billing_day)
    if installation_date.day <= day:
        return installation_date.replace(day=day)
    return BillingPeriod.from_date(installation_date).next().due_date(day)


def next_due_date_after(reference: date, billing_day: int) -> date:
    """Next occurrence of ``billing_day`` strictly after ``reference``."""

    day = clamp_billing_day(billing_day)
    if reference.day < day:
        return reference.replace(day=day)
    return BillingPeriod.from_date(reference).next().due_date(day)


def calculate_proration(
    installation_date: date, billing_day: int, monthly_fee: Decimal | float | str
) -> ProrationResult:
    fee = require_non_negative(monthly_fee, "monthly_fee")
    billing_date = first_billing_date(installation_date, billing_day)
    days_charged = (billing_date - installation_date).days
    days_in_month = monthrange(installation_date.year, installation_date.month)[1]

    prorated = (fee * Decimal(days_charged) / Decimal(days_in_month)).quantize(
        CENTS, rounding=ROUND_HALF_UP
    )
    return ProrationResult(
        prorated_amount=prorated,
        days_charged=days_charged,
        first_billing_date=billing_date,
        days_in_month=days_in_month,
    )


def calculate_initial_total(
    prorated_amount: Decimal | float | str,
    installation_cost: Decimal | float | str,
    additional_charges: Decimal | float | str = Decimal("0"),
) -> Decimal:
    """Balance owed right after onboarding."""

    return normalize_amount(
        normalize_amount(prorated_amount)
        + require_non_negative(installation_cost, "installation_cost")
        + require_non_negative(additional_charges, "additional_charges")
    )
