from __future__ import annotations
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from benefit_ledger.services.money import Money


class EmployeeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    ceiling: Money = Field(..., ge=0, max_digits=14, decimal_places=2)
    user_id: Optional[str] = None


class EmployeeUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    # Ceiling may be raised (or lowered) at any time, also retroactively.
    ceiling: Optional[Money] = Field(None, ge=0, max_digits=14, decimal_places=2)
    user_id: Optional[str] = None


class EmployeeOut(EmployeeIn):
    id: str
    created_at: datetime
    updated_at: datetime
