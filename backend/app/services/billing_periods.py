"""Billing period value type and period enumeration helpers."""

from __future__ import annotations

import os
import re
from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional

from .errors import LedgerValidationError

RECURRING_LABEL_ENV = "RECURRING_CHARGE_LABEL"
DEFAULT_RECURRING_LABEL = "Mensualidad"

MONTH_NAMES = (
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
)

_DESCRIPTION_PERIOD_PATTERN = re.compile(r"(?<!\d)(\d{1,2})/(\d{4})(?!\d)")


def recurring_label() -> str:
    return os.getenv(RECURRING_LABEL_ENV, DEFAULT_RECURRING_LABEL).strip() or DEFAULT_RECURRING_LABEL


@dataclass(frozen=True, order=True)
class BillingPeriod:
    """A (year, month) billing cycle. Instances sort chronologically."""

    year: int
    month: int

    VALID_PERIOD_PATTERN = re.compile(r"^\d{4}-\d{2}$")

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise LedgerValidationError("Invalid period month, expected 1-12")
        if not 1 <= self.year <= 9999:
            raise LedgerValidationError("Invalid period year")

    @classmethod
    def from_date(cls, value: date) -> "BillingPeriod":
        return cls(year=value.year, month=value.month)

    @classmethod
    def from_key(cls, period_key: str) -> "BillingPeriod":
        """Parse a ``YYYY-MM`` key."""

        sanitized = (period_key or "").strip()
        if not cls.VALID_PERIOD_PATTERN.match(sanitized):
            raise LedgerValidationError("Invalid period key format, expected YYYY-MM")
        year_str, month_str = sanitized.split("-", maxsplit=1)
        month = int(month_str)
        if month < 1 or month > 12:
            raise LedgerValidationError("Invalid period key format, expected YYYY-MM")
        return cls(year=int(year_str), month=month)

    @classmethod
    def from_description(cls, description: Optional[str]) -> Optional["BillingPeriod"]:
        """Extract the period from a legacy ``"<label> M/YYYY"`` description."""

        if not description:
            return None
        match = _DESCRIPTION_PERIOD_PATTERN.search(description)
        if match is None:
            return None
        month, year = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            return None
        return cls(year=year, month=month)

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def label(self) -> str:
        return f"{self.month}/{self.year}"

    @property
    def display_name(self) -> str:
        return f"{MONTH_NAMES[self.month - 1]} {self.year}"

    @property
    def starts_on(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def ends_on(self) -> date:
        return date(self.year, self.month, monthrange(self.year, self.month)[1])

    @property
    def days(self) -> int:
        return monthrange(self.year, self.month)[1]

    def shift(self, months: int) -> "BillingPeriod":
        index = self.year * 12 + (self.month - 1) + months
        return BillingPeriod(year=index // 12, month=index % 12 + 1)

    def next(self) -> "BillingPeriod":
        return self.shift(1)

    def previous(self) -> "BillingPeriod":
        return self.shift(-1)

    def due_date(self, billing_day: int) -> date:
        """Day ``billing_day`` of this period, clamped to the month length."""

        return date(self.year, self.month, min(max(billing_day, 1), self.days))

    def charge_description(self, label: Optional[str] = None) -> str:
        return f"{label or recurring_label()} {self.label}"

    def __str__(self) -> str:
        return self.key


class PeriodRange:
    """Gap-free, inclusive run of billing periods.

    The range is computed from its bounds on every iteration, so it can be
    iterated any number of times, in either direction, without caching.
    """

    def __init__(self, first: BillingPeriod, last: BillingPeriod) -> None:
        self.first = first
        self.last = last

    def __iter__(self) -> Iterator[BillingPeriod]:
        current = self.first
        while current <= self.last:
            yield current
            current = current.next()

    def __reversed__(self) -> Iterator[BillingPeriod]:
        current = self.last
        while current >= self.first:
            yield current
            current = current.previous()

    def __len__(self) -> int:
        span = (self.last.year * 12 + self.last.month) - (self.first.year * 12 + self.first.month)
        return max(span + 1, 0)

    def __contains__(self, period: object) -> bool:
        return isinstance(period, BillingPeriod) and self.first <= period <= self.last

    def ascending(self) -> Iterator[BillingPeriod]:
        return iter(self)

    def descending(self) -> Iterator[BillingPeriod]:
        return reversed(self)

    def __repr__(self) -> str:
        return f"PeriodRange({self.first.key!r}, {self.last.key!r})"


def iter_periods(start: date, as_of: Optional[date] = None) -> PeriodRange:
    """Periods from the calendar month of ``start`` through that of ``as_of``.

    The range is empty when ``as_of`` falls in a month before ``start``.
    """

    reference = as_of or date.today()
    return PeriodRange(BillingPeriod.from_date(start), BillingPeriod.from_date(reference))
