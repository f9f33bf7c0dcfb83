from __future__ import annotations
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .constants import PeriodStatus


class PeriodIn(BaseModel):
    label: str = Field(..., min_length=1, max_length=60)
    accrual_start: date
    accrual_end: date
    submission_open: date
    submission_close: date
    status: PeriodStatus = PeriodStatus.OPEN
    next_period_id: Optional[str] = None

    @model_validator(mode="after")
    def window_ordering(self) -> "PeriodIn":
        if self.accrual_end < self.accrual_start:
            raise ValueError("accrual_end cannot be before accrual_start")
        if self.submission_close < self.submission_open:
            raise ValueError("submission_close cannot be before submission_open")
        return self


class PeriodUpdateIn(BaseModel):
    """Partial update; window ordering is re-checked against the stored row."""

    label: Optional[str] = Field(None, min_length=1, max_length=60)
    accrual_start: Optional[date] = None
    accrual_end: Optional[date] = None
    submission_open: Optional[date] = None
    submission_close: Optional[date] = None
    status: Optional[PeriodStatus] = None
    next_period_id: Optional[str] = None

    @model_validator(mode="after")
    def at_least_one(self) -> "PeriodUpdateIn":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided for update")
        return self


class PeriodOut(PeriodIn):
    id: str
    created_at: datetime
    updated_at: datetime

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN
