"""Fixed-point money and hour arithmetic.

All monetary values in the engine are ``Decimal``. Floats are rejected at the
boundary so that ``net = gross - deductions`` reconciles exactly.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

UNIT = Decimal("1")  # whole currency unit (XOF has no minor unit)
HOURS_PRECISION = Decimal("0.01")
RATE_PRECISION = Decimal("0.0001")  # internal precision for hourly rates
ZERO = Decimal("0")

MoneyLike = Union[Decimal, int, str]


def to_decimal(value: MoneyLike) -> Decimal:
    """Convert an int/str/Decimal to Decimal, refusing binary floats."""
    if isinstance(value, bool):
        raise TypeError("Booleans are not monetary values")
    if isinstance(value, float):
        raise TypeError(f"Floating-point value {value!r} is not allowed for money")
    if isinstance(value, Decimal):
        return value
    return Decimal(value)


def round_to_unit(amount: Decimal) -> Decimal:
    """Round amount to the whole currency unit (half-up)."""
    return amount.quantize(UNIT, rounding=ROUND_HALF_UP)


def round_hours(hours: Decimal) -> Decimal:
    """Round hours to 2 decimal places (half-up)."""
    return hours.quantize(HOURS_PRECISION, rounding=ROUND_HALF_UP)


def round_rate(rate: Decimal) -> Decimal:
    """Round an intermediate rate to 4 decimal places."""
    return rate.quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)


def seconds_to_hours(seconds: int | float | Decimal) -> Decimal:
    """Convert a duration in seconds to hours (unrounded Decimal)."""
    # timedelta.total_seconds() returns a float; it is always a whole number of
    # microseconds, so going through str() is exact.
    return Decimal(str(seconds)) / Decimal(3600)


def format_amount(amount: Decimal | None) -> str | None:
    """Render an amount as a fixed-point string for the wire."""
    if amount is None:
        return None
    return format(amount, "f")
