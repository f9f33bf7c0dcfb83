"""Benefit basket ceiling allocation.

Splits a requested amount into the portion that counts against the employee's
ceiling ("considered") and the overflow ("not considered"):

1. remaining <= 0            -> refused; nothing considered.
2. requested <= remaining    -> fully considered.
3. 0 < remaining < requested -> accepted as the *last* claim of the period:
                                considered = remaining, the rest overflows and
                                further claims are blocked.

``considered + not_considered == requested`` holds for every outcome.

All functions are pure; callers pass an explicit ledger snapshot.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable

from benefit_ledger.core.errors import ValidationError
from benefit_ledger.services.money import ZERO, format_money, to_money

SUCCESS = "success"
WARNING = "warning"
ERROR = "error"


@dataclass(frozen=True)
class Allocation:
    permitted: bool
    considered: Decimal
    not_considered: Decimal
    blocked_after: bool
    severity: str
    message: str

    @property
    def is_partial(self) -> bool:
        return self.permitted and self.not_considered > 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "permitted": self.permitted,
            "considered": self.considered,
            "not_considered": self.not_considered,
            "blocked_after": self.blocked_after,
            "severity": self.severity,
            "message": self.message,
        }


def allocate(
    requested: Any, ceiling: Any, already_used: Any, symbol: str = "R$"
) -> Allocation:
    requested = to_money(requested)
    ceiling = to_money(ceiling)
    already_used = to_money(already_used)
    if requested <= 0:
        raise ValidationError("amount must be greater than zero")

    remaining = ceiling - already_used

    if remaining <= 0:
        return Allocation(
            permitted=False,
            considered=ZERO,
            not_considered=requested,
            blocked_after=True,
            severity=ERROR,
            message=(
                f"ceiling already reached ({format_money(ceiling, symbol)}); "
                "no further claims are accepted this period"
            ),
        )

    if requested <= remaining:
        left = remaining - requested
        pct = float((already_used + requested) / ceiling * 100)
        return Allocation(
            permitted=True,
            considered=requested,
            not_considered=ZERO,
            blocked_after=False,
            severity=SUCCESS,
            message=(
                f"within ceiling; remaining {format_money(left, symbol)} "
                f"({pct:.1f}% used)"
            ),
        )

    overflow = requested - remaining
    return Allocation(
        permitted=True,
        considered=remaining,
        not_considered=overflow,
        blocked_after=True,
        severity=WARNING,
        message=(
            f"claim of {format_money(requested, symbol)} exceeds the available "
            f"ceiling: {format_money(remaining, symbol)} considered, "
            f"{format_money(overflow, symbol)} not considered; "
            "this is the last claim allowed this period"
        ),
    )


def is_blocked_by_prior_overflow(
    prior_not_considered: Iterable[Any], current_remaining: Any
) -> bool:
    """True only when a prior claim overflowed AND no ceiling room is left.

    Raising the ceiling after an overflow makes ``current_remaining`` positive
    again and lifts the block.
    """
    overflowed = any(to_money(v) > 0 for v in prior_not_considered)
    return overflowed and to_money(current_remaining) <= 0


def unused_to_taxable_conversion(ceiling: Any, approved_used: Any) -> Decimal:
    ceiling = to_money(ceiling)
    approved_used = to_money(approved_used)
    if approved_used >= ceiling:
        return ZERO
    return ceiling - approved_used
