"""Submission-window resolution.

Decides which period a claim created "now" belongs to:

- before the submission window opens the claim is refused;
- inside the window (the close date counts through the end of that day) it
  lands in the target period;
- after the window it is redirected to the target's explicitly linked next
  period when that period is open, otherwise refused.

Only the linked ``next_period_id`` is consulted. Periods are never searched by
date, so a missing link is a configuration gap, not something to guess around.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Dict, Optional

from benefit_ledger.models.period import PeriodOut

BLOCKED = "blocked"
CURRENT = "current"
NEXT = "next"


@dataclass(frozen=True)
class Resolution:
    permitted: bool
    destination: str
    period_id: Optional[str]
    message: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "destination": self.destination,
            "period_id": self.period_id,
            "message": self.message,
        }


def end_of_day(d: date) -> datetime:
    return datetime.combine(d, time.max)


def resolve_period(
    now: datetime,
    period: Optional[PeriodOut],
    next_period: Optional[PeriodOut] = None,
) -> Resolution:
    if period is None:
        return Resolution(False, BLOCKED, None, "no period configured")

    opens_at = datetime.combine(period.submission_open, time.min)
    closes_at = end_of_day(period.submission_close)

    if now < opens_at:
        return Resolution(
            False,
            BLOCKED,
            None,
            f"submission window not yet open; opens {period.submission_open.isoformat()}",
        )

    if now <= closes_at:
        if not period.is_open:
            return Resolution(False, BLOCKED, None, f"period {period.label} is closed")
        return Resolution(
            True,
            CURRENT,
            period.id,
            f"submission window open until {period.submission_close.isoformat()}",
        )

    if next_period is not None and next_period.is_open:
        return Resolution(
            True,
            NEXT,
            next_period.id,
            f"period {period.label} closed; the claim will be recorded under "
            f"the next period {next_period.label}",
        )

    return Resolution(
        False, BLOCKED, None, "period closed, no next period configured"
    )
