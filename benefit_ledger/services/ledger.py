"""Per employee/period ledger recomputation.

Totals are always derived from the current set of claims; nothing is kept as a
running counter. Two "used" figures exist and must not be confused:

- ``approved_sum`` drives the displayed remaining balance and the taxable
  conversion at period end;
- ``allocation_used`` (approved + pending, i.e. everything not rejected) is the
  basis fed to :func:`benefit_ledger.services.quota.allocate`. Counting pending
  claims means two claims awaiting review can never jointly exceed the ceiling.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from benefit_ledger.models.claim import ClaimOut
from benefit_ledger.models.constants import ClaimStatus, PENDING_STATUSES
from benefit_ledger.services.money import ZERO, money_sum, to_money
from benefit_ledger.services.quota import (
    is_blocked_by_prior_overflow,
    unused_to_taxable_conversion,
)


@dataclass(frozen=True)
class LedgerSummary:
    employee_id: str
    period_id: str
    ceiling: Decimal
    approved_sum: Decimal
    pending_sum: Decimal
    rejected_sum: Decimal
    claim_count: int
    prior_not_considered: List[Decimal] = field(default_factory=list)

    @property
    def remaining(self) -> Decimal:
        return max(self.ceiling - self.approved_sum, ZERO)

    @property
    def allocation_used(self) -> Decimal:
        return self.approved_sum + self.pending_sum

    @property
    def available_for_allocation(self) -> Decimal:
        return self.ceiling - self.allocation_used

    @property
    def blocked(self) -> bool:
        return is_blocked_by_prior_overflow(
            self.prior_not_considered, self.available_for_allocation
        )

    @property
    def taxable_conversion(self) -> Decimal:
        return unused_to_taxable_conversion(self.ceiling, self.approved_sum)

    @property
    def percent_used(self) -> float:
        if self.ceiling <= 0:
            return 0.0
        return round(float(self.approved_sum / self.ceiling * 100), 2)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "period_id": self.period_id,
            "ceiling": self.ceiling,
            "approved_sum": self.approved_sum,
            "pending_sum": self.pending_sum,
            "rejected_sum": self.rejected_sum,
            "remaining": self.remaining,
            "allocation_used": self.allocation_used,
            "available_for_allocation": max(self.available_for_allocation, ZERO),
            "percent_used": self.percent_used,
            "blocked": self.blocked,
            "taxable_conversion": self.taxable_conversion,
            "claim_count": self.claim_count,
        }


def summarize(
    employee_id: str,
    period_id: str,
    ceiling: Any,
    claims: Sequence[ClaimOut],
    exclude_claim_id: Optional[str] = None,
) -> LedgerSummary:
    """Aggregate ``claims`` of one employee+period.

    exclude_claim_id: leave one claim out, used when an edited claim is
    re-allocated against everything else.
    """
    rows = [
        c
        for c in claims
        if c.employee_id == employee_id
        and c.period_id == period_id
        and c.id != exclude_claim_id
    ]
    return LedgerSummary(
        employee_id=employee_id,
        period_id=period_id,
        ceiling=to_money(ceiling),
        approved_sum=money_sum(c.considered for c in rows if c.status == ClaimStatus.APPROVED),
        pending_sum=money_sum(c.considered for c in rows if c.status in PENDING_STATUSES),
        rejected_sum=money_sum(c.considered for c in rows if c.status == ClaimStatus.REJECTED),
        claim_count=len(rows),
        prior_not_considered=[to_money(c.not_considered) for c in rows],
    )
