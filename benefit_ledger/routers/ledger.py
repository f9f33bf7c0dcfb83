from fastapi import APIRouter, Depends

from benefit_ledger.models.ledger import LedgerSummaryOut
from benefit_ledger.routers.deps import get_lifecycle
from benefit_ledger.services.lifecycle import ExpenseLifecycle

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get(
    "/{employee_id}/{period_id}",
    response_model=LedgerSummaryOut,
    summary="Benefit basket consumption of one employee in one period",
)
async def ledger_summary(
    employee_id: str,
    period_id: str,
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    return LedgerSummaryOut(**lifecycle.ledger_summary(employee_id, period_id).as_dict())
