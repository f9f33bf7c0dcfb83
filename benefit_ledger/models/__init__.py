"""Pydantic domain models for the Benefit Basket Ledger."""

from .constants import (
    ClaimStatus,
    Origin,
    Classification,
    PeriodStatus,
    Role,
    TERMINAL_STATUSES,
    PENDING_STATUSES,
)  # re-export
from .period import PeriodIn, PeriodOut, PeriodUpdateIn
from .employee import EmployeeIn, EmployeeOut, EmployeeUpdateIn
from .expense_type import ExpenseTypeIn, ExpenseTypeOut
from .claim import ClaimIn, ClaimEditIn, ClaimOut

__all__ = [
    "ClaimStatus",
    "Origin",
    "Classification",
    "PeriodStatus",
    "Role",
    "TERMINAL_STATUSES",
    "PENDING_STATUSES",
    "PeriodIn",
    "PeriodOut",
    "PeriodUpdateIn",
    "EmployeeIn",
    "EmployeeOut",
    "EmployeeUpdateIn",
    "ExpenseTypeIn",
    "ExpenseTypeOut",
    "ClaimIn",
    "ClaimEditIn",
    "ClaimOut",
]
