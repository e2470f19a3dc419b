from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from app.models.cash_advance import ApprovalLevel, CashAdvanceType, ReviewAction


class CashAdvanceCreate(BaseModel):
    type: CashAdvanceType
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    purpose: Optional[str] = None
    date_requested: datetime


class CashAdvanceUpdate(BaseModel):
    """Only the fields present in the request body are applied."""
    type: Optional[CashAdvanceType] = None
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    purpose: Optional[str] = None
    date_requested: Optional[datetime] = None


class CashAdvanceResponse(BaseModel):
    id: int
    requested_by: int
    type: str
    amount: Decimal
    purpose: Optional[str] = None
    date_requested: datetime
    # Derived from the two level fields
    status: str
    level1_status: Optional[str] = None
    level1_reviewer_id: Optional[int] = None
    level1_reviewed_at: Optional[datetime] = None
    level1_comment: Optional[str] = None
    level2_status: Optional[str] = None
    level2_reviewer_id: Optional[int] = None
    level2_reviewed_at: Optional[datetime] = None
    level2_comment: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CashAdvanceTransitionRequest(BaseModel):
    id: int
    level: ApprovalLevel
    action: ReviewAction
    reviewer_id: Optional[int] = None
    comment: Optional[str] = None
