from __future__ import annotations
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field, field_validator

from .constants import Classification, Origin


class ExpenseTypeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    allowed_origins: List[Origin] = Field(default_factory=lambda: [Origin.SELF])
    classification: Classification = Classification.VARIABLE

    @field_validator("allowed_origins")
    @classmethod
    def non_empty_unique(cls, v: List[Origin]) -> List[Origin]:
        if not v:
            raise ValueError("at least one origin must be allowed")
        # keep declaration order, drop repeats
        return list(dict.fromkeys(v))


class ExpenseTypeOut(ExpenseTypeIn):
    id: str
    created_at: datetime

    def allows(self, origin: Origin) -> bool:
        return origin in self.allowed_origins
