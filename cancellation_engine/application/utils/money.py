from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation

HUNDRED = Decimal("100")
ZERO = Decimal("0")


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Coerce a number to Decimal without going through binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a valid amount: {value!r}") from e


def round_currency(value: Decimal, minor_units: int = 2) -> Decimal:
    # Banker's rounding, once, on the final value.
    quantum = Decimal(1).scaleb(-minor_units)
    return value.quantize(quantum, rounding=ROUND_HALF_EVEN)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    return amount * percentage / HUNDRED
