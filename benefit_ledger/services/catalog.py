"""Administration of periods, eligible employees and expense types.

All writes require the ``admin`` role and are audited.
"""

from __future__ import annotations
from datetime import date
from typing import List, Optional
import logging

import pydantic

from benefit_ledger.core.errors import NotFoundError, PolicyError, ValidationError
from benefit_ledger.db.dal import (
    Database,
    row_to_employee,
    row_to_expense_type,
    row_to_period,
)
from benefit_ledger.models import (
    EmployeeIn,
    EmployeeOut,
    EmployeeUpdateIn,
    ExpenseTypeIn,
    ExpenseTypeOut,
    PeriodIn,
    PeriodOut,
    PeriodUpdateIn,
)
from benefit_ledger.models.constants import PeriodStatus, Role
from benefit_ledger.services import audit as audit_kinds
from benefit_ledger.services.audit import AuditLogger
from benefit_ledger.services.identity import Actor, require_role

logger = logging.getLogger("benefit_ledger.catalog")


class CatalogService:
    def __init__(self, db: Database, audit: Optional[AuditLogger] = None):
        self.db = db
        self.audit = audit or AuditLogger(db)

    # ------------------------------------------------------------------
    # Periods
    def get_period(self, period_id: str) -> PeriodOut:
        row = self.db.get_period(period_id)
        if not row:
            raise NotFoundError("period", period_id)
        return row_to_period(row)

    def list_periods(self, status: Optional[PeriodStatus] = None) -> List[PeriodOut]:
        return [row_to_period(r) for r in self.db.list_periods(status.value if status else None)]

    def current_period(self, today: date) -> PeriodOut:
        row = self.db.get_current_period(today)
        if not row:
            raise NotFoundError("period", "current")
        return row_to_period(row)

    def _check_next_link(self, period_id: Optional[str], next_period_id: Optional[str]) -> None:
        if next_period_id is None:
            return
        if next_period_id == period_id:
            raise ValidationError("a period cannot be its own next period")
        if not self.db.get_period(next_period_id):
            raise NotFoundError("period", next_period_id)

    def create_period(self, payload: PeriodIn, actor: Actor) -> PeriodOut:
        actor_id = require_role(actor, Role.ADMIN, "create period")
        self._check_next_link(None, payload.next_period_id)
        period_id = self.db.create_period(payload.model_dump())
        period = self.get_period(period_id)
        self.audit.record(
            "create", audit_kinds.PERIOD, period.id, actor_id,
            new_values=period.model_dump(mode="json"),
        )
        logger.info("period created", extra={"period_id": period.id})
        return period

    def update_period(self, period_id: str, payload: PeriodUpdateIn, actor: Actor) -> PeriodOut:
        actor_id = require_role(actor, Role.ADMIN, "update period")
        existing = self.get_period(period_id)
        changes = payload.model_dump(exclude_unset=True)
        for key in ("label", "accrual_start", "accrual_end", "submission_open", "submission_close", "status"):
            if key in changes and changes[key] is None:
                raise ValidationError(f"{key} cannot be null")
        # re-check window ordering on the merged record
        try:
            merged = PeriodIn.model_validate({**existing.model_dump(), **changes})
        except pydantic.ValidationError as e:
            raise ValidationError(
                "invalid period windows",
                {"errors": [err["msg"] for err in e.errors()]},
            ) from e
        self._check_next_link(period_id, merged.next_period_id)
        self.db.update_period(period_id, changes)
        updated = self.get_period(period_id)
        self.audit.record(
            "update", audit_kinds.PERIOD, period_id, actor_id,
            old_values=existing.model_dump(mode="json"),
            new_values=updated.model_dump(mode="json"),
        )
        return updated

    def close_period(self, period_id: str, actor: Actor) -> PeriodOut:
        """Close a period once every claim in it has been approved or rejected."""
        require_role(actor, Role.ADMIN, "close period")
        self.get_period(period_id)
        pending = len(self.db.list_review_queue(period_id))
        if pending:
            raise PolicyError(
                f"{pending} claim(s) still awaiting review; "
                "all claims must be reviewed before closing the period",
                {"period_id": period_id, "pending_count": pending},
            )
        return self.update_period(period_id, PeriodUpdateIn(status=PeriodStatus.CLOSED), actor)

    # ------------------------------------------------------------------
    # Employees
    def get_employee(self, employee_id: str) -> EmployeeOut:
        row = self.db.get_employee(employee_id)
        if not row:
            raise NotFoundError("employee", employee_id)
        return row_to_employee(row)

    def list_employees(self) -> List[EmployeeOut]:
        return [row_to_employee(r) for r in self.db.list_employees()]

    def create_employee(self, payload: EmployeeIn, actor: Actor) -> EmployeeOut:
        actor_id = require_role(actor, Role.ADMIN, "create employee")
        employee_id = self.db.create_employee(payload.model_dump())
        employee = self.get_employee(employee_id)
        self.audit.record(
            "create", audit_kinds.EMPLOYEE, employee.id, actor_id,
            new_values=employee.model_dump(mode="json"),
        )
        return employee

    def update_employee(
        self, employee_id: str, payload: EmployeeUpdateIn, actor: Actor
    ) -> EmployeeOut:
        actor_id = require_role(actor, Role.ADMIN, "update employee")
        existing = self.get_employee(employee_id)
        changes = payload.model_dump(exclude_unset=True)
        for key in ("name", "ceiling"):
            if key in changes and changes[key] is None:
                raise ValidationError(f"{key} cannot be null")
        self.db.update_employee(employee_id, changes)
        updated = self.get_employee(employee_id)
        self.audit.record(
            "update", audit_kinds.EMPLOYEE, employee_id, actor_id,
            old_values=existing.model_dump(mode="json"),
            new_values=updated.model_dump(mode="json"),
        )
        if updated.ceiling != existing.ceiling:
            logger.info(
                "ceiling changed %s -> %s", existing.ceiling, updated.ceiling,
                extra={"employee_id": employee_id},
            )
        return updated

    # ------------------------------------------------------------------
    # Expense types
    def get_expense_type(self, type_id: str) -> ExpenseTypeOut:
        row = self.db.get_expense_type(type_id)
        if not row:
            raise NotFoundError("expense type", type_id)
        return row_to_expense_type(row)

    def list_expense_types(self) -> List[ExpenseTypeOut]:
        return [row_to_expense_type(r) for r in self.db.list_expense_types()]

    def create_expense_type(self, payload: ExpenseTypeIn, actor: Actor) -> ExpenseTypeOut:
        actor_id = require_role(actor, Role.ADMIN, "create expense type")
        type_id = self.db.create_expense_type(
            payload.name, payload.allowed_origins, payload.classification
        )
        expense_type = self.get_expense_type(type_id)
        self.audit.record(
            "create", audit_kinds.EXPENSE_TYPE, type_id, actor_id,
            new_values=expense_type.model_dump(mode="json"),
        )
        return expense_type
