from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from benefit_ledger.models import PeriodIn, PeriodOut, PeriodUpdateIn
from benefit_ledger.models.constants import PeriodStatus
from benefit_ledger.models.ledger import TaxableConversionOut
from benefit_ledger.routers.deps import get_actor, get_catalog, get_lifecycle
from benefit_ledger.services.catalog import CatalogService
from benefit_ledger.services.identity import Actor
from benefit_ledger.services.lifecycle import ExpenseLifecycle

router = APIRouter(prefix="/periods", tags=["periods"])


@router.get("/", response_model=List[PeriodOut], summary="List periods (newest first)")
async def list_periods(
    status: Optional[PeriodStatus] = Query(None, description="Filter by period status"),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.list_periods(status)


@router.get("/current", response_model=PeriodOut, summary="Period whose accrual window contains today")
async def current_period(catalog: CatalogService = Depends(get_catalog)):
    return catalog.current_period(date.today())


@router.get(
    "/resolve",
    summary="Preview where a claim submitted now would be recorded",
)
async def resolve_period(
    period_id: Optional[str] = Query(
        None, description="Target period (defaults to the current period)"
    ),
    lifecycle: ExpenseLifecycle = Depends(get_lifecycle),
):
    resolution = lifecycle.resolve(period_id)
    return {"permitted": resolution.permitted, **resolution.as_dict()}


@router.get("/{period_id}", response_model=PeriodOut, summary="Get a period")
async def get_period(period_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_period(period_id)


@router.post("/", response_model=PeriodOut, status_code=201, summary="Create a period")
async def create_period(
    payload: PeriodIn,
    actor: Actor = Depends(get_actor),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.create_period(payload, actor)


@router.patch("/{period_id}", response_model=PeriodOut, summary="Edit a period (partial)")
async def update_period(
    period_id: str,
    payload: PeriodUpdateIn,
    actor: Actor = Depends(get_actor),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.update_period(period_id, payload, actor)


@router.post("/{period_id}/close", response_model=PeriodOut, summary="Close a period")
async def close_period(
    period_id: str,
    actor: Actor = Depends(get_actor),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.close_period(period_id, actor)


@router.get(
    "/{period_id}/taxable-conversions",
    response_model=List[TaxableConversionOut],
    summary="Unused ceiling per employee, converted to taxable pay",
)
async def taxable_conversions(
    period_id: str, lifecycle: ExpenseLifecycle = Depends(get_lifecycle)
):
    return lifecycle.taxable_conversions(period_id)
