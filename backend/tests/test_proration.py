from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from backend.app.services.errors import LedgerValidationError
from backend.app.services.proration import (
    calculate_initial_total,
    calculate_proration,
    clamp_billing_day,
    first_billing_date,
    next_due_date_after,
)


def test_installation_on_billing_day_has_no_proration():
    result = calculate_proration(date(2026, 4, 10), 10, Decimal("500"))

    assert result.days_charged == 0
    assert result.prorated_amount == Decimal("0.00")
    assert result.first_billing_date == date(2026, 4, 10)


def test_installation_one_day_after_billing_day_charges_almost_a_month():
    result = calculate_proration(date(2026, 4, 11), 10, Decimal("300"))

    assert result.days_charged == 29
    assert result.days_in_month == 30
    assert result.prorated_amount == Decimal("290.00")
    assert result.first_billing_date == date(2026, 5, 10)


def test_installation_mid_month_rolls_to_next_billing_day():
    result = calculate_proration(date(2026, 4, 15), 10, Decimal("500"))

    assert result.days_charged == 25
    assert result.prorated_amount == Decimal("416.67")
    assert result.first_billing_date == date(2026, 5, 10)


def test_installation_before_billing_day_bills_same_month():
    result = calculate_proration(date(2026, 4, 3), 10, Decimal("300"))

    assert result.first_billing_date == date(2026, 4, 10)
    assert result.days_charged == 7
    assert result.prorated_amount == Decimal("70.00")


def test_december_installation_rolls_into_next_year():
    result = calculate_proration(date(2026, 12, 20), 5, Decimal("310"))

    assert result.first_billing_date == date(2027, 1, 5)
    assert result.days_charged == 16
    assert result.days_in_month == 31
    assert result.prorated_amount == Decimal("160.00")


def test_proration_rounds_half_up():
    # 0.70 * 1 / 28 is exactly 0.025
    result = calculate_proration(date(2026, 2, 27), 28, Decimal("0.70"))

    assert result.days_charged == 1
    assert result.prorated_amount == Decimal("0.03")


@pytest.mark.parametrize("raw, expected", [(0, 1), (1, 1), (15, 15), (28, 28), (31, 28)])
def test_billing_day_is_clamped(raw, expected):
    assert clamp_billing_day(raw) == expected


def test_first_billing_date_uses_clamped_day():
    assert first_billing_date(date(2026, 2, 27), 31) == date(2026, 2, 28)


def test_next_due_date_is_strictly_after_reference():
    assert next_due_date_after(date(2026, 10, 19), 10) == date(2026, 11, 10)
    assert next_due_date_after(date(2026, 10, 19), 25) == date(2026, 10, 25)
    assert next_due_date_after(date(2026, 10, 10), 10) == date(2026, 11, 10)
    assert next_due_date_after(date(2026, 12, 15), 10) == date(2027, 1, 10)


def test_initial_total_adds_every_component():
    assert calculate_initial_total(Decimal("416.67"), Decimal("200"), Decimal("50.5")) == Decimal(
        "667.17"
    )


def test_negative_fee_is_rejected():
    with pytest.raises(LedgerValidationError):
        calculate_proration(date(2026, 4, 15), 10, Decimal("-1"))
