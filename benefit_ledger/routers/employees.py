from typing import List

from fastapi import APIRouter, Depends

from benefit_ledger.models import EmployeeIn, EmployeeOut, EmployeeUpdateIn
from benefit_ledger.routers.deps import get_actor, get_catalog
from benefit_ledger.services.catalog import CatalogService
from benefit_ledger.services.identity import Actor

router = APIRouter(prefix="/employees", tags=["employees"])


@router.get("/", response_model=List[EmployeeOut], summary="List eligible employees")
async def list_employees(catalog: CatalogService = Depends(get_catalog)):
    return catalog.list_employees()


@router.get("/{employee_id}", response_model=EmployeeOut, summary="Get an employee")
async def get_employee(employee_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_employee(employee_id)


@router.post("/", response_model=EmployeeOut, status_code=201, summary="Register an eligible employee")
async def create_employee(
    payload: EmployeeIn,
    actor: Actor = Depends(get_actor),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.create_employee(payload, actor)


@router.patch(
    "/{employee_id}",
    response_model=EmployeeOut,
    summary="Edit an employee (ceiling changes apply retroactively)",
)
async def update_employee(
    employee_id: str,
    payload: EmployeeUpdateIn,
    actor: Actor = Depends(get_actor),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.update_employee(employee_id, payload, actor)
