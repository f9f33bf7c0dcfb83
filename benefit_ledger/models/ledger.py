from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from benefit_ledger.services.money import Money


class LedgerSummaryOut(BaseModel):
    employee_id: str
    period_id: str
    ceiling: Money
    approved_sum: Money
    pending_sum: Money
    rejected_sum: Money
    remaining: Money
    allocation_used: Money
    available_for_allocation: Money
    percent_used: float
    blocked: bool
    taxable_conversion: Money
    claim_count: int


class TaxableConversionOut(BaseModel):
    employee_id: str
    employee_name: str
    ceiling: Money
    approved_sum: Money
    taxable_amount: Money


class AuditEntryOut(BaseModel):
    id: int
    action: str
    entity_type: str
    entity_id: str
    actor_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    created_at: datetime
