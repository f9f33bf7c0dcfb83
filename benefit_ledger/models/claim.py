from __future__ import annotations
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from benefit_ledger.services.money import Money
from .constants import ClaimStatus, Origin


class ClaimIn(BaseModel):
    employee_id: str
    # Omitted -> the catalog's current period is the target.
    period_id: Optional[str] = None
    expense_type_id: str
    origin: Origin = Origin.SELF
    description: str = Field(..., min_length=1, max_length=500)
    document_number: Optional[str] = Field(None, max_length=60)
    amount: Money = Field(..., gt=0, max_digits=14, decimal_places=2)
    # Digest of the receipt file, computed by the attachment store.
    receipt_signature: Optional[str] = Field(None, min_length=8, max_length=128)


class ClaimEditIn(BaseModel):
    """Re-submission of a non-terminal claim. Employee and period are fixed."""

    expense_type_id: Optional[str] = None
    origin: Optional[Origin] = None
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    document_number: Optional[str] = Field(None, max_length=60)
    amount: Optional[Money] = Field(None, gt=0, max_digits=14, decimal_places=2)

    @model_validator(mode="after")
    def at_least_one(self) -> "ClaimEditIn":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided for update")
        return self


class ClaimOut(BaseModel):
    id: str
    employee_id: str
    period_id: str
    expense_type_id: str
    origin: Origin
    description: str
    document_number: Optional[str] = None
    receipt_signature: Optional[str] = None
    requested: Money
    considered: Money
    not_considered: Money
    status: ClaimStatus
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class AllocationOut(BaseModel):
    permitted: bool
    considered: Money
    not_considered: Money
    blocked_after: bool
    severity: str
    message: str


class ResolutionOut(BaseModel):
    destination: str
    period_id: Optional[str] = None
    message: str


class ClaimSubmitOut(BaseModel):
    claim: ClaimOut
    allocation: AllocationOut
    resolution: ResolutionOut


class RejectIn(BaseModel):
    # Blank/missing reasons are refused by the lifecycle, not here, so single
    # and batch rejections report the same error.
    reason: Optional[str] = None


class BatchApproveIn(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class BatchRejectIn(BaseModel):
    ids: List[str] = Field(..., min_length=1)
    reason: Optional[str] = None


class BatchItemError(BaseModel):
    id: str
    message: str


class BatchResultOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success_count: int = Field(..., alias="successCount")
    errors: List[BatchItemError] = Field(default_factory=list)
