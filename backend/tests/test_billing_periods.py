from __future__ import annotations

from datetime import date

import pytest

from backend.app.services.billing_periods import BillingPeriod, PeriodRange, iter_periods
from backend.app.services.errors import LedgerValidationError


def test_period_key_round_trip_and_labels():
    period = BillingPeriod.from_key("2026-03")

    assert period == BillingPeriod(2026, 3)
    assert period.key == "2026-03"
    assert period.label == "3/2026"
    assert period.display_name == "marzo 2026"
    assert period.starts_on == date(2026, 3, 1)
    assert period.ends_on == date(2026, 3, 31)


@pytest.mark.parametrize("raw", ["2026-13", "2026-3", "26-03", "", "marzo"])
def test_invalid_period_keys_are_rejected(raw):
    with pytest.raises(LedgerValidationError):
        BillingPeriod.from_key(raw)


def test_shift_crosses_year_boundaries():
    assert BillingPeriod(2026, 12).next() == BillingPeriod(2027, 1)
    assert BillingPeriod(2026, 1).previous() == BillingPeriod(2025, 12)
    assert BillingPeriod(2026, 11).shift(14) == BillingPeriod(2028, 1)


def test_due_date_is_clamped_to_month_length():
    assert BillingPeriod(2026, 2).due_date(10) == date(2026, 2, 10)
    assert BillingPeriod(2026, 2).due_date(31) == date(2026, 2, 28)


def test_charge_description_uses_configured_label(monkeypatch):
    assert BillingPeriod(2026, 3).charge_description() == "Mensualidad 3/2026"

    monkeypatch.setenv("RECURRING_CHARGE_LABEL", "Renta")
    assert BillingPeriod(2026, 3).charge_description() == "Renta 3/2026"


def test_legacy_description_is_parsed():
    assert BillingPeriod.from_description("Mensualidad 3/2026") == BillingPeriod(2026, 3)
    assert BillingPeriod.from_description("Mensualidad 11/2025 (ajuste)") == BillingPeriod(2025, 11)
    assert BillingPeriod.from_description("Costo de instalación") is None
    assert BillingPeriod.from_description("Mensualidad 13/2025") is None


def test_period_range_is_ordered_gap_free_and_restartable():
    periods = PeriodRange(BillingPeriod(2025, 11), BillingPeriod(2026, 2))

    ascending = [period.key for period in periods]
    assert ascending == ["2025-11", "2025-12", "2026-01", "2026-02"]
    assert [period.key for period in periods] == ascending
    assert [period.key for period in reversed(periods)] == list(reversed(ascending))
    assert len(periods) == 4
    assert BillingPeriod(2026, 1) in periods
    assert BillingPeriod(2026, 3) not in periods


def test_iter_periods_includes_start_and_as_of_months():
    periods = list(iter_periods(date(2026, 1, 31), as_of=date(2026, 3, 1)))

    assert periods == [BillingPeriod(2026, 1), BillingPeriod(2026, 2), BillingPeriod(2026, 3)]


def test_iter_periods_is_empty_when_start_is_in_the_future():
    assert list(iter_periods(date(2026, 5, 1), as_of=date(2026, 3, 1))) == []
