"""
Decimal helpers shared by the metrics engine and strategies.

All money and ratio values in the engine are ``decimal.Decimal`` evaluated
under one financial context (40 significant digits, ROUND_HALF_UP).
"""

from decimal import Decimal, Context, ROUND_HALF_UP, InvalidOperation, localcontext
from typing import Any, Iterable, Optional

FINANCIAL_CONTEXT = Context(prec=40, rounding=ROUND_HALF_UP)

ZERO = Decimal(0)
ONE = Decimal(1)
TWO = Decimal(2)
HUNDRED = Decimal(100)
BPS_DENOMINATOR = Decimal(10000)
DAYS_PER_YEAR = Decimal(365)
HOURS_PER_YEAR = 24 * 365


def financial_context():
    """Context manager applying the engine's decimal context."""
    return localcontext(FINANCIAL_CONTEXT)


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Decimal:
    """
    Convert a JSON/YAML scalar to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1. Booleans and non-finite
    values are rejected.

    Raises:
        ValueError: If the value cannot be represented and no default is given
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        if default is not None:
            return default
        raise ValueError(f"Cannot convert {value!r} to Decimal")
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            if default is not None:
                return default
            raise ValueError(f"Cannot convert {value!r} to Decimal")

    if not result.is_finite():
        if default is not None:
            return default
        raise ValueError(f"Non-finite decimal value: {value!r}")
    return result


def dsqrt(value: Decimal) -> Decimal:
    """Square root under the financial context; 0 for non-positive input."""
    if value <= 0:
        return ZERO
    with financial_context():
        return value.sqrt()


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))


def dsum(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    with financial_context():
        for value in values:
            total += value
    return total
