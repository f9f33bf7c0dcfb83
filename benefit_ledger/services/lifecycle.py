"""Expense claim lifecycle.

State machine::

    submitted ──start_review──> in_review
        │                          │
        ├──approve / reject────────┴──approve / reject──> approved | rejected

``in_review`` is optional; approved and rejected are terminal. Claims are
always created in ``submitted`` with their considered / not-considered split
decided at creation time, and re-decided on edit.

Every ceiling decision follows read-snapshot -> decide -> versioned write; a
write that loses a race is re-decided against a fresh snapshot up to
``Settings.allocation_max_retries`` times.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple, TypeVar
import logging

from benefit_ledger.core.errors import (
    DomainError,
    InvalidTransitionError,
    LedgerConflictError,
    NotFoundError,
    PolicyError,
    ValidationError,
)
from benefit_ledger.db.dal import (
    Database,
    row_to_claim,
    row_to_employee,
    row_to_expense_type,
    row_to_period,
)
from benefit_ledger.models import (
    ClaimEditIn,
    ClaimIn,
    ClaimOut,
    EmployeeOut,
    ExpenseTypeOut,
)
from benefit_ledger.models.constants import (
    ClaimStatus,
    Origin,
    PENDING_STATUSES,
    Role,
)
from benefit_ledger.services import audit as audit_kinds
from benefit_ledger.services.audit import AuditLogger
from benefit_ledger.services.identity import Actor, require_identity, require_role
from benefit_ledger.services.ledger import LedgerSummary, summarize
from benefit_ledger.services.period_resolver import Resolution, resolve_period
from benefit_ledger.services.quota import Allocation, allocate

logger = logging.getLogger("benefit_ledger.lifecycle")

T = TypeVar("T")

START_REVIEW = "start_review"
APPROVE = "approve"
REJECT = "reject"
EDIT = "edit"
DELETE = "delete"

# action -> (allowed source statuses, target status)
TRANSITIONS: Dict[str, Tuple[FrozenSet[ClaimStatus], ClaimStatus]] = {
    START_REVIEW: (frozenset({ClaimStatus.SUBMITTED}), ClaimStatus.IN_REVIEW),
    APPROVE: (PENDING_STATUSES, ClaimStatus.APPROVED),
    REJECT: (PENDING_STATUSES, ClaimStatus.REJECTED),
}


def next_status(claim_id: str, current: ClaimStatus, action: str) -> ClaimStatus:
    sources, target = TRANSITIONS[action]
    if current not in sources:
        raise InvalidTransitionError(claim_id, current.value, action)
    return target


@dataclass(frozen=True)
class SubmitResult:
    claim: ClaimOut
    allocation: Allocation
    resolution: Resolution


@dataclass
class BatchResult:
    success_count: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {"successCount": self.success_count, "errors": self.errors}


class ExpenseLifecycle:
    def __init__(
        self,
        db: Database,
        audit: Optional[AuditLogger] = None,
        max_retries: int = 3,
        currency_symbol: str = "R$",
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.audit = audit or AuditLogger(db)
        self.max_retries = max_retries
        self.currency_symbol = currency_symbol
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookups
    def get_claim(self, claim_id: str) -> ClaimOut:
        row = self.db.get_claim(claim_id)
        if not row:
            raise NotFoundError("claim", claim_id)
        return row_to_claim(row)

    def _employee(self, employee_id: str) -> EmployeeOut:
        row = self.db.get_employee(employee_id)
        if not row:
            raise NotFoundError("employee", employee_id)
        return row_to_employee(row)

    def _expense_type(self, type_id: str) -> ExpenseTypeOut:
        row = self.db.get_expense_type(type_id)
        if not row:
            raise NotFoundError("expense type", type_id)
        return row_to_expense_type(row)

    @staticmethod
    def _check_origin(expense_type: ExpenseTypeOut, origin: Origin) -> None:
        if not expense_type.allows(origin):
            raise ValidationError(
                f"origin '{origin.value}' is not allowed for expense type '{expense_type.name}'",
                {"allowed_origins": [o.value for o in expense_type.allowed_origins]},
            )

    def _snapshot(self, employee_id: str, period_id: str, exclude: Optional[str] = None) -> Tuple[LedgerSummary, int]:
        rows, version = self.db.ledger_snapshot(employee_id, period_id)
        # ceiling read after the version; a concurrent ceiling change bumps it
        employee = self._employee(employee_id)
        claims = [row_to_claim(r) for r in rows]
        return summarize(employee.id, period_id, employee.ceiling, claims, exclude), version

    def _retrying(self, employee_id: str, period_id: str, attempt: Callable[[], T]) -> T:
        for n in range(1, self.max_retries + 1):
            try:
                return attempt()
            except LedgerConflictError:
                logger.warning(
                    "ledger changed during allocation, retrying (%d/%d)",
                    n,
                    self.max_retries,
                    extra={"employee_id": employee_id, "period_id": period_id},
                )
        raise LedgerConflictError(employee_id, period_id)

    # ------------------------------------------------------------------
    # Period resolution
    def resolve(self, period_id: Optional[str], now: Optional[datetime] = None) -> Resolution:
        now = now or self.clock()
        if period_id:
            row = self.db.get_period(period_id)
            if not row:
                raise NotFoundError("period", period_id)
        else:
            row = self.db.get_current_period(now.date())
        period = row_to_period(row) if row else None
        next_period = None
        if period is not None and period.next_period_id:
            next_row = self.db.get_period(period.next_period_id)
            next_period = row_to_period(next_row) if next_row else None
        return resolve_period(now, period, next_period)

    # ------------------------------------------------------------------
    # Creation / edit
    def submit(self, payload: ClaimIn, actor: Actor) -> SubmitResult:
        actor_id = require_identity(actor)
        if payload.amount <= 0:
            raise ValidationError("amount must be greater than zero")
        employee = self._employee(payload.employee_id)
        expense_type = self._expense_type(payload.expense_type_id)
        self._check_origin(expense_type, payload.origin)
        if payload.receipt_signature and self.db.receipt_signature_exists(
            payload.receipt_signature
        ):
            raise ValidationError("receipt already used by another claim")

        resolution = self.resolve(payload.period_id)
        if not resolution.permitted:
            logger.warning(
                "submission blocked: %s",
                resolution.message,
                extra={"employee_id": employee.id, "period_id": payload.period_id},
            )
            raise PolicyError(resolution.message, {"resolution": resolution.as_dict()})
        period_id = resolution.period_id

        def attempt() -> Tuple[str, Allocation]:
            summary, version = self._snapshot(employee.id, period_id)
            if summary.blocked:
                raise PolicyError(
                    "a previous claim already exceeded the ceiling; "
                    "no further claims are accepted this period",
                    {"ledger": summary.as_dict()},
                )
            allocation = allocate(
                payload.amount, summary.ceiling, summary.allocation_used, self.currency_symbol
            )
            if not allocation.permitted:
                raise PolicyError(allocation.message, {"allocation": allocation.as_dict()})
            claim_id = self.db.insert_claim_checked(
                {
                    "employee_id": employee.id,
                    "period_id": period_id,
                    "expense_type_id": expense_type.id,
                    "origin": payload.origin,
                    "description": payload.description,
                    "document_number": payload.document_number,
                    "receipt_signature": payload.receipt_signature,
                    "requested": payload.amount,
                    "considered": allocation.considered,
                    "not_considered": allocation.not_considered,
                },
                expected_version=version,
            )
            return claim_id, allocation

        claim_id, allocation = self._retrying(employee.id, period_id, attempt)
        claim = self.get_claim(claim_id)
        self.audit.record(
            "create",
            audit_kinds.CLAIM,
            claim.id,
            actor_id,
            new_values=claim.model_dump(mode="json"),
        )
        logger.info(
            "claim submitted (%s)",
            allocation.severity,
            extra={"claim_id": claim.id, "employee_id": employee.id, "period_id": period_id},
        )
        return SubmitResult(claim=claim, allocation=allocation, resolution=resolution)

    def edit(self, claim_id: str, payload: ClaimEditIn, actor: Actor) -> Tuple[ClaimOut, Allocation]:
        actor_id = require_identity(actor)
        claim = self.get_claim(claim_id)
        if claim.status not in PENDING_STATUSES:
            raise InvalidTransitionError(claim.id, claim.status.value, EDIT)

        changes = payload.model_dump(exclude_unset=True)
        expense_type = self._expense_type(changes.get("expense_type_id") or claim.expense_type_id)
        origin = changes.get("origin") or claim.origin
        self._check_origin(expense_type, origin)
        amount = changes.get("amount") or claim.requested
        employee = self._employee(claim.employee_id)

        def attempt() -> Allocation:
            summary, version = self._snapshot(claim.employee_id, claim.period_id, exclude=claim.id)
            allocation = allocate(
                amount, summary.ceiling, summary.allocation_used, self.currency_symbol
            )
            if not allocation.permitted:
                raise PolicyError(allocation.message, {"allocation": allocation.as_dict()})
            fields = {
                "expense_type_id": expense_type.id,
                "origin": origin,
                "requested": amount,
                "considered": allocation.considered,
                "not_considered": allocation.not_considered,
            }
            if changes.get("description") is not None:
                fields["description"] = changes["description"]
            if "document_number" in changes:
                fields["document_number"] = changes["document_number"]
            self.db.update_claim_checked(claim.id, fields, claim.status, version)
            return allocation

        allocation = self._retrying(employee.id, claim.period_id, attempt)
        updated = self.get_claim(claim.id)
        self.audit.record(
            "update",
            audit_kinds.CLAIM,
            claim.id,
            actor_id,
            old_values=claim.model_dump(mode="json"),
            new_values=updated.model_dump(mode="json"),
        )
        logger.info("claim edited", extra={"claim_id": claim.id})
        return updated, allocation

    def delete(self, claim_id: str, actor: Actor) -> None:
        """Withdraw a claim nobody has picked up for review yet."""
        actor_id = require_identity(actor)
        claim = self.get_claim(claim_id)
        if claim.status != ClaimStatus.SUBMITTED or not self.db.delete_claim(
            claim.id, claim.status
        ):
            raise InvalidTransitionError(claim.id, claim.status.value, DELETE)
        self.audit.record(
            DELETE, audit_kinds.CLAIM, claim.id, actor_id, old_values=claim.model_dump(mode="json")
        )
        logger.info("claim deleted", extra={"claim_id": claim.id})

    # ------------------------------------------------------------------
    # Review transitions
    def _transition(
        self, claim_id: str, action: str, actor_id: str, reason: Optional[str] = None
    ) -> ClaimOut:
        claim = self.get_claim(claim_id)
        target = next_status(claim.id, claim.status, action)
        fields: Dict[str, object] = {"status": target}
        new_values: Dict[str, object] = {"status": target.value}
        if target.is_terminal:
            # naive clock values are local time; stored in UTC like created_at
            reviewed_at = self.clock().astimezone(timezone.utc).isoformat()
            fields.update(reviewed_by=actor_id, reviewed_at=reviewed_at)
            new_values.update(reviewed_by=actor_id, reviewed_at=reviewed_at)
        if target == ClaimStatus.REJECTED:
            fields["rejection_reason"] = reason
            new_values["rejection_reason"] = reason

        if not self.db.transition_claim(claim.id, claim.status, fields):
            # lost a race with another reviewer
            current = self.get_claim(claim.id)
            raise InvalidTransitionError(claim.id, current.status.value, action)

        self.audit.record(
            action,
            audit_kinds.CLAIM,
            claim.id,
            actor_id,
            old_values={"status": claim.status.value},
            new_values=new_values,
        )
        logger.info(
            "claim %s -> %s",
            claim.status.value,
            target.value,
            extra={"claim_id": claim.id, "action": action},
        )
        return self.get_claim(claim.id)

    @staticmethod
    def _require_reason(reason: Optional[str]) -> str:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("rejection reason is required")
        return reason

    def start_review(self, claim_id: str, actor: Actor) -> ClaimOut:
        actor_id = require_role(actor, Role.APPROVER, START_REVIEW)
        return self._transition(claim_id, START_REVIEW, actor_id)

    def approve(self, claim_id: str, actor: Actor) -> ClaimOut:
        actor_id = require_role(actor, Role.APPROVER, APPROVE)
        return self._transition(claim_id, APPROVE, actor_id)

    def reject(self, claim_id: str, reason: Optional[str], actor: Actor) -> ClaimOut:
        actor_id = require_role(actor, Role.APPROVER, REJECT)
        return self._transition(claim_id, REJECT, actor_id, self._require_reason(reason))

    # ------------------------------------------------------------------
    # Batch variants: item isolation, no cross-row atomicity
    def _batch(self, ids: List[str], action: str, actor_id: str, reason: Optional[str] = None) -> BatchResult:
        result = BatchResult()
        for claim_id in ids:
            try:
                self._transition(claim_id, action, actor_id, reason)
            except DomainError as e:
                result.errors.append({"id": claim_id, "message": e.message})
            else:
                result.success_count += 1
        logger.info(
            "batch %s: %d ok, %d failed",
            action,
            result.success_count,
            len(result.errors),
            extra={"action": action},
        )
        return result

    def approve_many(self, ids: List[str], actor: Actor) -> BatchResult:
        actor_id = require_role(actor, Role.APPROVER, APPROVE)
        return self._batch(ids, APPROVE, actor_id)

    def reject_many(self, ids: List[str], reason: Optional[str], actor: Actor) -> BatchResult:
        actor_id = require_role(actor, Role.APPROVER, REJECT)
        return self._batch(ids, REJECT, actor_id, self._require_reason(reason))

    # ------------------------------------------------------------------
    # Ledger views
    def ledger_summary(self, employee_id: str, period_id: str) -> LedgerSummary:
        employee = self._employee(employee_id)
        if not self.db.get_period(period_id):
            raise NotFoundError("period", period_id)
        summary, _ = self._snapshot(employee.id, period_id)
        return summary

    def taxable_conversions(self, period_id: str) -> List[Dict[str, object]]:
        """Unused ceiling per employee, handed to payroll as taxable pay."""
        if not self.db.get_period(period_id):
            raise NotFoundError("period", period_id)
        out = []
        for row in self.db.list_employees():
            employee = row_to_employee(row)
            summary, _ = self._snapshot(employee.id, period_id)
            out.append(
                {
                    "employee_id": employee.id,
                    "employee_name": employee.name,
                    "ceiling": summary.ceiling,
                    "approved_sum": summary.approved_sum,
                    "taxable_amount": summary.taxable_conversion,
                }
            )
        return out
