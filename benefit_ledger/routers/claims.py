from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from benefit_ledger.db.dal import row_to_claim
from benefit_ledger.models import ClaimEditIn, ClaimIn, ClaimOut
from benefit_ledger.models.claim import (
    AllocationOut,
    BatchApproveIn,
    BatchRejectIn,
    BatchResultOut,
    ClaimSubmitOut,
    RejectIn,
    ResolutionOut,
)
from benefit_ledger.models.constants import ClaimStatus
from benefit_ledger.models.ledger import AuditEntryOut
from benefit_ledger.routers.deps import get_actor, get_lifecycle
from benefit_ledger.services import audit as audit_kinds
from benefit_ledger.services.identity import Actor
from benefit_ledger.services.lifecycle import BatchResult, ExpenseLifecycle

router = APIRouter(prefix="/claims", tags=["claims"])


# Response models ----------------------------------------------------
class ClaimEditOut(BaseModel):
    claim: ClaimOut
    allocation: AllocationOut


# Helpers ----------------------------------------------------------
def _batch_out(result: BatchResult) -> BatchResultOut:
    return BatchResultOut.model_validate(result.as_dict())


# Routes -----------------------------------------------------------
@router.get("/", response_model=List[ClaimOut], summary="List claims with optional filters")
async def list_claims(
    employee_id: Optional[str] = Query(None),
    period_id: Optional[str] = Query(None),
    status: Optional[ClaimStatus] = Query(None, description="enviado | em_analise | valido | invalido"),
    expense_type_id: Optional[str] = Query(None),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    rows = lifecycle.db.list_claims(
        employee_id=employee_id,
        period_id=period_id,
        status=status,
        expense_type_id=expense_type_id,
    )
    return [row_to_claim(r) for r in rows]


@router.get(
    "/review-queue",
    response_model=List[ClaimOut],
    summary="Claims awaiting review, oldest first",
)
async def review_queue(
    period_id: Optional[str] = Query(None),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    return [row_to_claim(r) for r in lifecycle.db.list_review_queue(period_id)]


@router.post(
    "/", response_model=ClaimSubmitOut, status_code=201, summary="Submit a claim"
)
async def submit_claim(
    payload: ClaimIn,
    actor: Actor = Depends(get_actor),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    result = lifecycle.submit(payload, actor)
    return ClaimSubmitOut(
        claim=result.claim,
        allocation=AllocationOut(**result.allocation.as_dict()),
        resolution=ResolutionOut(**result.resolution.as_dict()),
    )


@router.post(
    "/approve-batch",
    response_model=BatchResultOut,
    summary="Approve several claims; each succeeds or fails on its own",
)
async def approve_batch(
    payload: BatchApproveIn,
    actor: Actor = Depends(get_actor),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    return _batch_out(lifecycle.approve_many(payload.ids, actor))


@router.post(
    "/reject-batch",
    response_model=BatchResultOut,
    summary="Reject several claims with one reason; each succeeds or fails on its own",
)
async def reject_batch(
    payload: BatchRejectIn,
    actor: Actor = Depends(get_actor),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    return _batch_out(lifecycle.reject_many(payload.ids, payload.reason, actor))


@router.get("/{claim_id}", response_model=ClaimOut, summary="Get a claim")
async def get_claim(claim_id: str, lifecycle: ExpenseLifecycle = Depends(get_lifecycle)):
    return lifecycle.get_claim(claim_id)


@router.patch(
    "/{claim_id}",
    response_model=ClaimEditOut,
    summary="Edit a pending claim and re-allocate it",
)
async def edit_claim(
    claim_id: str,
    payload: ClaimEditIn,
    actor: Actor = Depends(get_actor),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    claim, allocation = lifecycle.edit(claim_id, payload, actor)
    return ClaimEditOut(claim=claim, allocation=AllocationOut(**allocation.as_dict()))


@router.delete("/{claim_id}", status_code=204, summary="Withdraw a submitted claim")
async def delete_claim(
    claim_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    lifecycle.delete(claim_id, actor)
    return None


@router.post("/{claim_id}/start-review", response_model=ClaimOut, summary="Start reviewing a claim")
async def start_review(
    claim_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    return lifecycle.start_review(claim_id, actor)


@router.post("/{claim_id}/approve", response_model=ClaimOut, summary="Approve a claim")
async def approve_claim(
    claim_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    return lifecycle.approve(claim_id, actor)


@router.post("/{claim_id}/reject", response_model=ClaimOut, summary="Reject a claim")
async def reject_claim(
    claim_id: str,
    payload: RejectIn,
    actor: Actor = Depends(get_actor),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    return lifecycle.reject(claim_id, payload.reason, actor)


@router.get(
    "/{claim_id}/audit-logs",
    response_model=List[AuditEntryOut],
    summary="Audit trail of a claim",
)
async def claim_audit_logs(
    claim_id: str, lifecycle: ExpenseLifecycle = Depends(get_lifecycle)
):
    lifecycle.get_claim(claim_id)
    return lifecycle.audit.history(audit_kinds.CLAIM, claim_id)
