from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from benefit_ledger.core.errors import (
    AuthorizationError,
    InvalidTransitionError,
    LedgerConflictError,
    PolicyError,
    ValidationError,
)
from benefit_ledger.models import ClaimEditIn, ClaimIn, ClaimStatus, EmployeeUpdateIn, Origin
from benefit_ledger.services import audit as audit_kinds
from benefit_ledger.services.lifecycle import ExpenseLifecycle
from benefit_ledger.services.period_resolver import NEXT

from .conftest import ADMIN, ANONYMOUS, APPROVER, EMPLOYEE

D = Decimal


def submit(lifecycle, employee, expense_type, amount, period=None, **kw):
    payload = ClaimIn(
        employee_id=employee.id,
        period_id=period.id if period else None,
        expense_type_id=expense_type.id,
        description=kw.pop("description", "receipt"),
        amount=D(str(amount)),
        **kw,
    )
    return lifecycle.submit(payload, EMPLOYEE)


@pytest.fixture
def setup(lifecycle, january, employee, pharmacy):
    return lifecycle, january, employee, pharmacy


def test_submit_within_ceiling(setup):
    lifecycle, period, employee, pharmacy = setup
    result = submit(lifecycle, employee, pharmacy, 250, period)
    assert result.claim.status == ClaimStatus.SUBMITTED
    assert result.claim.considered == D("250.00")
    assert result.claim.period_id == period.id
    assert result.allocation.severity == "success"


def test_submit_defaults_to_current_period(setup):
    lifecycle, period, employee, pharmacy = setup
    result = submit(lifecycle, employee, pharmacy, 10)
    assert result.claim.period_id == period.id


def test_partial_claim_then_blocked(setup):
    lifecycle, period, employee, pharmacy = setup
    submit(lifecycle, employee, pharmacy, 800, period)
    partial = submit(lifecycle, employee, pharmacy, 300, period)
    assert partial.claim.considered == D("200.00")
    assert partial.claim.not_considered == D("100.00")
    assert partial.allocation.blocked_after is True
    with pytest.raises(PolicyError):
        submit(lifecycle, employee, pharmacy, 50, period)


def test_pending_claims_count_toward_ceiling(setup):
    lifecycle, period, employee, pharmacy = setup
    submit(lifecycle, employee, pharmacy, 600, period)
    second = submit(lifecycle, employee, pharmacy, 600, period)
    assert second.claim.considered == D("400.00")


def test_rejected_claims_free_the_ceiling(setup):
    lifecycle, period, employee, pharmacy = setup
    first = submit(lifecycle, employee, pharmacy, 1000, period)
    lifecycle.reject(first.claim.id, "illegible receipt", APPROVER)
    second = submit(lifecycle, employee, pharmacy, 300, period)
    assert second.claim.considered == D("300.00")


def test_raised_ceiling_lifts_overflow_block(setup, catalog):
    lifecycle, period, employee, pharmacy = setup
    submit(lifecycle, employee, pharmacy, 1200, period)
    with pytest.raises(PolicyError):
        submit(lifecycle, employee, pharmacy, 10, period)
    catalog.update_employee(employee.id, EmployeeUpdateIn(ceiling=D("1500")), ADMIN)
    result = submit(lifecycle, employee, pharmacy, 10, period)
    assert result.claim.considered == D("10.00")


def test_after_window_redirects_to_next_period(db, january, employee, pharmacy):
    late = ExpenseLifecycle(db, clock=lambda: datetime(2024, 1, 25, 9, 0))
    result = submit(late, employee, pharmacy, 100, january)
    assert result.resolution.destination == NEXT
    assert result.claim.period_id == january.next_period_id


def test_before_window_is_refused(db, january, employee, pharmacy):
    early = ExpenseLifecycle(db, clock=lambda: datetime(2024, 1, 5))
    with pytest.raises(PolicyError) as exc:
        submit(early, employee, pharmacy, 100, january)
    assert exc.value.details["resolution"]["destination"] == "blocked"


def test_origin_must_be_allowed(setup):
    lifecycle, period, employee, pharmacy = setup
    with pytest.raises(ValidationError):
        submit(lifecycle, employee, pharmacy, 10, period, origin=Origin.SPOUSE)


def test_duplicate_receipt_refused(setup):
    lifecycle, period, employee, pharmacy = setup
    submit(lifecycle, employee, pharmacy, 10, period, receipt_signature="sha256:abcdef01")
    with pytest.raises(ValidationError):
        submit(lifecycle, employee, pharmacy, 20, period, receipt_signature="sha256:abcdef01")


def test_submit_requires_identity(setup):
    lifecycle, period, employee, pharmacy = setup
    payload = ClaimIn(
        employee_id=employee.id,
        period_id=period.id,
        expense_type_id=pharmacy.id,
        description="x",
        amount=D("10"),
    )
    with pytest.raises(AuthorizationError):
        lifecycle.submit(payload, ANONYMOUS)


def test_review_flow(setup):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period).claim
    in_review = lifecycle.start_review(claim.id, APPROVER)
    assert in_review.status == ClaimStatus.IN_REVIEW
    assert in_review.reviewed_by is None
    approved = lifecycle.approve(claim.id, APPROVER)
    assert approved.status == ClaimStatus.APPROVED
    assert approved.reviewed_by == "approver-1"
    assert approved.reviewed_at is not None


def test_terminal_states_are_final(setup):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period).claim
    lifecycle.approve(claim.id, APPROVER)
    with pytest.raises(InvalidTransitionError):
        lifecycle.reject(claim.id, "too late", APPROVER)
    with pytest.raises(InvalidTransitionError):
        lifecycle.approve(claim.id, APPROVER)
    with pytest.raises(InvalidTransitionError):
        lifecycle.start_review(claim.id, APPROVER)
    with pytest.raises(InvalidTransitionError):
        lifecycle.edit(claim.id, ClaimEditIn(amount=D("5")), EMPLOYEE)


def test_start_review_only_from_submitted(setup):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period).claim
    lifecycle.start_review(claim.id, APPROVER)
    with pytest.raises(InvalidTransitionError):
        lifecycle.start_review(claim.id, APPROVER)


def test_reject_requires_reason(setup):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period).claim
    with pytest.raises(ValidationError):
        lifecycle.reject(claim.id, "   ", APPROVER)
    rejected = lifecycle.reject(claim.id, "duplicate", APPROVER)
    assert rejected.status == ClaimStatus.REJECTED
    assert rejected.rejection_reason == "duplicate"


def test_review_requires_approver_role(setup):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period).claim
    with pytest.raises(AuthorizationError):
        lifecycle.approve(claim.id, EMPLOYEE)
    with pytest.raises(AuthorizationError):
        lifecycle.approve_many([claim.id], ADMIN)
    assert lifecycle.get_claim(claim.id).status == ClaimStatus.SUBMITTED


def test_batch_approve_isolates_failures(setup):
    lifecycle, period, employee, pharmacy = setup
    a = submit(lifecycle, employee, pharmacy, 100, period).claim
    b = submit(lifecycle, employee, pharmacy, 100, period).claim
    lifecycle.reject(b.id, "not eligible", APPROVER)
    result = lifecycle.approve_many([a.id, b.id], APPROVER)
    assert result.as_dict() == {
        "successCount": 1,
        "errors": [{"id": b.id, "message": "invalid transition"}],
    }
    assert lifecycle.get_claim(a.id).status == ClaimStatus.APPROVED


def test_batch_reject_reports_missing_claims(setup):
    lifecycle, period, employee, pharmacy = setup
    a = submit(lifecycle, employee, pharmacy, 100, period).claim
    result = lifecycle.reject_many([a.id, "missing"], "wrong type", APPROVER)
    assert result.success_count == 1
    assert result.errors == [{"id": "missing", "message": "claim not found"}]


def test_batch_reject_requires_reason_up_front(setup):
    lifecycle, period, employee, pharmacy = setup
    a = submit(lifecycle, employee, pharmacy, 100, period).claim
    with pytest.raises(ValidationError):
        lifecycle.reject_many([a.id], "", APPROVER)
    assert lifecycle.get_claim(a.id).status == ClaimStatus.SUBMITTED


def test_edit_recomputes_split_excluding_itself(setup):
    lifecycle, period, employee, pharmacy = setup
    submit(lifecycle, employee, pharmacy, 700, period)
    claim = submit(lifecycle, employee, pharmacy, 200, period).claim
    updated, allocation = lifecycle.edit(claim.id, ClaimEditIn(amount=D("500")), EMPLOYEE)
    assert updated.requested == D("500.00")
    assert updated.considered == D("300.00")
    assert updated.not_considered == D("200.00")
    assert allocation.is_partial


def test_edit_keeps_fields_not_sent(setup):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period, document_number="NF-1").claim
    updated, _ = lifecycle.edit(claim.id, ClaimEditIn(description="corrected"), EMPLOYEE)
    assert updated.description == "corrected"
    assert updated.document_number == "NF-1"
    assert updated.requested == D("100.00")


def test_delete_only_while_submitted(setup):
    lifecycle, period, employee, pharmacy = setup
    a = submit(lifecycle, employee, pharmacy, 100, period).claim
    lifecycle.delete(a.id, EMPLOYEE)
    assert lifecycle.db.get_claim(a.id) is None
    b = submit(lifecycle, employee, pharmacy, 100, period).claim
    lifecycle.start_review(b.id, APPROVER)
    with pytest.raises(InvalidTransitionError):
        lifecycle.delete(b.id, EMPLOYEE)


def test_stale_version_write_conflicts(setup):
    lifecycle, period, employee, pharmacy = setup
    _, version = lifecycle.db.ledger_snapshot(employee.id, period.id)
    submit(lifecycle, employee, pharmacy, 100, period)
    with pytest.raises(LedgerConflictError):
        lifecycle.db.insert_claim_checked(
            {
                "employee_id": employee.id,
                "period_id": period.id,
                "expense_type_id": pharmacy.id,
                "origin": Origin.SELF,
                "description": "stale",
                "requested": D("100"),
                "considered": D("100"),
                "not_considered": D("0"),
            },
            expected_version=version,
        )


def test_conflicting_attempt_is_retried(setup, monkeypatch):
    lifecycle, period, employee, pharmacy = setup
    real_insert = lifecycle.db.insert_claim_checked
    calls = []

    def flaky_insert(data, expected_version):
        calls.append(expected_version)
        if len(calls) == 1:
            raise LedgerConflictError(data["employee_id"], data["period_id"])
        return real_insert(data, expected_version)

    monkeypatch.setattr(lifecycle.db, "insert_claim_checked", flaky_insert)
    result = submit(lifecycle, employee, pharmacy, 100, period)
    assert len(calls) == 2
    assert result.claim.considered == D("100.00")


def test_retries_exhausted_surface_conflict(setup, monkeypatch):
    lifecycle, period, employee, pharmacy = setup

    def always_conflict(data, expected_version):
        raise LedgerConflictError(data["employee_id"], data["period_id"])

    monkeypatch.setattr(lifecycle.db, "insert_claim_checked", always_conflict)
    with pytest.raises(LedgerConflictError) as exc:
        submit(lifecycle, employee, pharmacy, 100, period)
    assert exc.value.details["retryable"] is True


def test_audit_trail_records_transitions(setup):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period).claim
    lifecycle.start_review(claim.id, APPROVER)
    lifecycle.reject(claim.id, "blurry", APPROVER)
    entries = lifecycle.audit.history(audit_kinds.CLAIM, claim.id)
    assert [e["action"] for e in entries] == ["create", "start_review", "reject"]
    assert entries[-1]["actor_id"] == "approver-1"
    assert entries[-1]["old_values"] == {"status": "em_analise"}
    assert entries[-1]["new_values"]["rejection_reason"] == "blurry"


def test_audit_failure_does_not_block_transition(setup, monkeypatch):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period).claim

    def broken(**kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(lifecycle.db, "insert_audit_log", broken)
    assert lifecycle.approve(claim.id, APPROVER).status == ClaimStatus.APPROVED


def test_taxable_conversions(setup):
    lifecycle, period, employee, pharmacy = setup
    a = submit(lifecycle, employee, pharmacy, 400, period).claim
    submit(lifecycle, employee, pharmacy, 100, period)
    lifecycle.approve(a.id, APPROVER)
    rows = lifecycle.taxable_conversions(period.id)
    assert rows == [
        {
            "employee_id": employee.id,
            "employee_name": "Ana",
            "ceiling": D("1000.00"),
            "approved_sum": D("400.00"),
            "taxable_amount": D("600.00"),
        }
    ]


def test_close_period_refuses_pending_claims(setup, catalog):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period).claim
    with pytest.raises(PolicyError) as exc:
        catalog.close_period(period.id, ADMIN)
    assert exc.value.details["pending_count"] == 1
    assert catalog.get_period(period.id).is_open

    lifecycle.approve(claim.id, APPROVER)
    assert not catalog.close_period(period.id, ADMIN).is_open


def test_close_period_requires_admin(setup, catalog):
    lifecycle, period, employee, pharmacy = setup
    with pytest.raises(AuthorizationError):
        catalog.close_period(period.id, APPROVER)


def test_edit_of_claim_reviewed_meanwhile_is_invalid_transition(setup, monkeypatch):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period).claim
    real_snapshot = lifecycle._snapshot
    calls = []

    def snapshot_then_approve(employee_id, period_id, exclude=None):
        calls.append(period_id)
        result = real_snapshot(employee_id, period_id, exclude)
        if len(calls) == 1:
            lifecycle.approve(claim.id, APPROVER)
        return result

    monkeypatch.setattr(lifecycle, "_snapshot", snapshot_then_approve)
    with pytest.raises(InvalidTransitionError) as exc:
        lifecycle.edit(claim.id, ClaimEditIn(amount=D("50")), EMPLOYEE)
    assert exc.value.details["current_status"] == "valido"
    assert len(calls) == 1
    assert lifecycle.get_claim(claim.id).requested == D("100.00")


def test_ceiling_lowered_during_submission_is_honoured(setup, monkeypatch):
    lifecycle, period, employee, pharmacy = setup
    real_snapshot = lifecycle.db.ledger_snapshot
    lowered = []

    def lower_then_snapshot(employee_id, period_id):
        if not lowered:
            lowered.append(True)
            lifecycle.db.update_employee(employee_id, {"ceiling": D("100")})
        return real_snapshot(employee_id, period_id)

    monkeypatch.setattr(lifecycle.db, "ledger_snapshot", lower_then_snapshot)
    result = submit(lifecycle, employee, pharmacy, 300, period)
    assert result.claim.considered == D("100.00")
    assert result.claim.not_considered == D("200.00")


def test_ceiling_change_invalidates_ledger_version(setup, catalog):
    lifecycle, period, employee, pharmacy = setup
    _, before = lifecycle.db.ledger_snapshot(employee.id, period.id)
    catalog.update_employee(employee.id, EmployeeUpdateIn(ceiling=D("900")), ADMIN)
    _, after = lifecycle.db.ledger_snapshot(employee.id, period.id)
    assert after > before
    _, unchanged = lifecycle.db.ledger_snapshot(employee.id, period.id)
    catalog.update_employee(employee.id, EmployeeUpdateIn(name="Ana Maria"), ADMIN)
    assert lifecycle.db.ledger_snapshot(employee.id, period.id)[1] == unchanged


def test_review_timestamp_is_utc(setup):
    lifecycle, period, employee, pharmacy = setup
    claim = submit(lifecycle, employee, pharmacy, 100, period).claim
    approved = lifecycle.approve(claim.id, APPROVER)
    assert approved.reviewed_at.utcoffset() == timedelta(0)
