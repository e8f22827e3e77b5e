from __future__ import annotations

from datetime import date
from decimal import Decimal

from backend.app import models
from backend.app.services.account_state import (
    AccountStanding,
    PeriodState,
    derive_account_state,
    pending_total,
    period_statuses,
)
from backend.app.services.billing_periods import BillingPeriod


def _recurring(year: int, month: int, amount: str = "300", *, paid: bool = False, advance: bool = False):
    return models.Charge(
        id=f"charge-{year}-{month}",
        kind=models.ChargeKind.RECURRING,
        period_year=year,
        period_month=month,
        description=BillingPeriod(year, month).charge_description(),
        amount=Decimal(amount),
        status=models.ChargeStatus.PAID if paid else models.ChargeStatus.PENDING,
        paid_date=date(year, month, 5) if paid else None,
        is_advance=advance,
    )


def _ad_hoc(amount: str, *, paid: bool = False):
    return models.Charge(
        kind=models.ChargeKind.AD_HOC,
        description="Cambio de router",
        amount=Decimal(amount),
        status=models.ChargeStatus.PAID if paid else models.ChargeStatus.PENDING,
    )


def test_client_without_charges_is_current_with_next_billing_day():
    state = derive_account_state([], 10, today=date(2026, 10, 19))

    assert state.standing == AccountStanding.CURRENT
    assert state.pending_total == Decimal("0.00")
    assert state.display_balance == Decimal("0.00")
    assert state.next_due_date == date(2026, 11, 10)
    assert state.covered_until is None
    assert state.has_advance is False


def test_pending_charges_put_client_in_debt():
    charges = [_recurring(2026, 9, paid=True), _recurring(2026, 10), _ad_hoc("150")]

    state = derive_account_state(charges, 10, today=date(2026, 10, 19))

    assert state.standing == AccountStanding.IN_DEBT
    assert state.pending_total == Decimal("450.00")
    assert state.display_balance == Decimal("450.00")
    assert state.pending_count == 2
    assert state.covered_until == "septiembre 2026"
    assert state.next_due_date == date(2026, 10, 10)


def test_paid_future_period_marks_client_up_to_date():
    charges = [
        _recurring(2026, 10, paid=True),
        _recurring(2026, 11, paid=True, advance=True),
        _recurring(2026, 12, paid=True, advance=True),
    ]

    state = derive_account_state(charges, 10, today=date(2026, 10, 19), credit_amount=Decimal("50"))

    assert state.standing == AccountStanding.UP_TO_DATE
    assert state.has_advance is True
    assert state.display_balance == Decimal("0.00")
    assert state.covered_until_period == "2026-12"
    assert state.next_due_date == date(2027, 1, 10)
    assert state.credit_amount == Decimal("50.00")


def test_settled_through_current_month_is_current():
    charges = [_recurring(2026, 9, paid=True), _recurring(2026, 10, paid=True)]

    state = derive_account_state(charges, 10, today=date(2026, 10, 19))

    assert state.standing == AccountStanding.CURRENT
    assert state.has_advance is False


def test_next_due_date_is_after_the_covered_period():
    for last_paid in (BillingPeriod(2026, 1), BillingPeriod(2026, 12), BillingPeriod(2027, 6)):
        charges = [_recurring(last_paid.year, last_paid.month, paid=True)]
        state = derive_account_state(charges, 28, today=date(2026, 10, 19))
        assert state.next_due_date > last_paid.due_date(28)


def test_derivation_has_no_side_effects():
    charges = [_recurring(2026, 10), _recurring(2026, 9, paid=True)]
    before = [(c.status, c.amount, c.paid_date) for c in charges]

    first = derive_account_state(charges, 10, today=date(2026, 10, 19))
    second = derive_account_state(charges, 10, today=date(2026, 10, 19))

    assert first == second
    assert [(c.status, c.amount, c.paid_date) for c in charges] == before


def test_pending_total_ignores_paid_charges():
    charges = [_ad_hoc("10.10"), _ad_hoc("20.20", paid=True), _recurring(2026, 1, "0.05")]

    assert pending_total(charges) == Decimal("10.15")


def test_period_statuses_newest_first_with_missing_and_overdue():
    charges = [_recurring(2026, 1, paid=True), _recurring(2026, 2), _ad_hoc("99")]

    statuses = period_statuses(
        charges,
        subscription_start=date(2026, 1, 10),
        billing_day=10,
        as_of=date(2026, 3, 5),
    )

    assert [item.period.key for item in statuses] == ["2026-03", "2026-02", "2026-01"]
    assert [item.status for item in statuses] == [
        PeriodState.MISSING,
        PeriodState.OVERDUE,
        PeriodState.PAID,
    ]
    assert statuses[0].days_until_due == 5
    assert statuses[1].charge_id == "charge-2026-2"


def test_period_statuses_include_advance_periods():
    charges = [_recurring(2026, 3, paid=True), _recurring(2026, 4, paid=True, advance=True)]

    statuses = period_statuses(
        charges,
        subscription_start=date(2026, 3, 10),
        billing_day=10,
        as_of=date(2026, 3, 1),
        newest_first=False,
    )

    assert [item.period.key for item in statuses] == ["2026-03", "2026-04"]
    assert statuses[0].status == PeriodState.PAID
    assert statuses[1].is_advance is True
