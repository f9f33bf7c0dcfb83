from typing import List

from fastapi import APIRouter, Depends

from benefit_ledger.models import ExpenseTypeIn, ExpenseTypeOut
from benefit_ledger.routers.deps import get_actor, get_catalog
from benefit_ledger.services.catalog import CatalogService
from benefit_ledger.services.identity import Actor

router = APIRouter(prefix="/expense-types", tags=["expense-types"])


@router.get("/", response_model=List[ExpenseTypeOut], summary="List expense types")
async def list_expense_types(catalog: CatalogService = Depends(get_catalog)):
    return catalog.list_expense_types()


@router.get("/{type_id}", response_model=ExpenseTypeOut, summary="Get an expense type")
async def get_expense_type(type_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_expense_type(type_id)


@router.post("/", response_model=ExpenseTypeOut, status_code=201, summary="Create an expense type")
async def create_expense_type(
    payload: ExpenseTypeIn,
    actor: Actor = Depends(get_actor),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.create_expense_type(payload, actor)
