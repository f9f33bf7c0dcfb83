"""Money / rounding helpers.

Centralized so the allocator, the ledger and the API models use identical
rounding semantics. Amounts are ``Decimal`` quantized to cents (half-up);
sqlite stores them as REAL and they are re-read through ``str`` so no binary
float noise leaks into sums.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Any, Iterable

from pydantic import PlainSerializer

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Any]) -> Decimal:
    total = ZERO
    for v in values:
        total += to_money(v)
    return total


def format_money(value: Any, symbol: str = "R$") -> str:
    return f"{symbol} {to_money(value):,.2f}"


# JSON responses carry plain numbers, like the rest of the API.
Money = Annotated[
    Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")
]
