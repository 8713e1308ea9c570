"""
Decimal helpers for money math.

Balances are stored as Numeric(20, 8); every amount that crosses a
service boundary is converted with to_decimal() first so float noise
never reaches the database.
"""

from decimal import Decimal, ROUND_DOWN
from typing import Any, Union

from fortune_city.models.base import ZERO

Number = Union[int, float, str, Decimal]


def to_decimal(value: Any) -> Decimal:
    """Convert ints, floats, strings and None to Decimal. None becomes 0."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def round_down(value: Number, decimals: int) -> Decimal:
    quant = Decimal(1).scaleb(-decimals)
    return to_decimal(value).quantize(quant, rounding=ROUND_DOWN)


def to_base_units(value: Number, decimals: int) -> int:
    """Token amount to integer base units (lamports, USDT micro units)."""
    return int(round_down(value, decimals).scaleb(decimals))


def from_base_units(amount: int, decimals: int) -> Decimal:
    return Decimal(amount).scaleb(-decimals)


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))
