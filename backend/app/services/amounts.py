"""Currency helpers used across the ledger."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import LedgerValidationError

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def normalize_amount(value: Decimal | float | int | str | None) -> Decimal:
    """Quantize a value to currency precision using round-half-up."""

    if value is None:
        return ZERO
    try:
        # floats go through ``str`` so 0.1 stays 0.1
        decimal_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise LedgerValidationError(f"Invalid amount: {value!r}") from exc
    if not decimal_value.is_finite():
        raise LedgerValidationError(f"Invalid amount: {value!r}")
    return decimal_value.quantize(CENTS, rounding=ROUND_HALF_UP)


def require_positive(value: Decimal | float | int | str | None, field: str = "amount") -> Decimal:
    amount = normalize_amount(value)
    if amount <= 0:
        raise LedgerValidationError(f"{field} must be greater than zero")
    return amount


def require_non_negative(
    value: Decimal | float | int | str | None, field: str = "amount"
) -> Decimal:
    amount = normalize_amount(value)
    if amount < 0:
        raise LedgerValidationError(f"{field} must be zero or greater")
    return amount
