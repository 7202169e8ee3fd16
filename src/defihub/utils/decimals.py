"""Exact decimal helpers for token quantities."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import ContextManager

TOKEN_DP = 18
AMOUNT_DP = 6
PRICE_DP = 6
PERCENT_DP = 2

# Working precision for intermediate arithmetic; token amounts need 18 dp on
# top of up to ~15 integer digits.
_WORKING_PREC = 50

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
DAYS_PER_YEAR = Decimal("365")


def precise() -> ContextManager[object]:
    """Local decimal context for engine arithmetic."""
    return localcontext(prec=_WORKING_PREC)


def to_decimal(value: str | int | Decimal) -> Decimal:
    """Parse a wire value into a finite Decimal. Floats are rejected."""
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"float_not_allowed: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"not_a_decimal: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"not_finite: {value!r}")
    return result


def truncate(value: Decimal, places: int = TOKEN_DP) -> Decimal:
    """Round toward zero to a fixed number of decimal places."""
    with precise():
        return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)


def format_fixed(value: Decimal, places: int) -> str:
    """Render a fixed-precision string, truncating extra digits."""
    return f"{truncate(value, places):f}"
