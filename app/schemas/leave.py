from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from app.models.leave_request import LeaveAction


class LeaveRequestCreate(BaseModel):
    employee_id: int
    leave_type: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    reason: str = Field(..., min_length=1)


class LeaveRequestResponse(BaseModel):
    id: int
    employee_id: int
    leave_type: str
    start_date: date
    end_date: date
    reason: str
    status: str
    duration_days: int
    debited_days: Decimal
    reviewer_id: Optional[int] = None
    reviewer_comment: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LeaveTransitionRequest(BaseModel):
    id: int
    action: LeaveAction
    reviewer_id: Optional[int] = None
    comment: Optional[str] = None


class LedgerEntryResponse(BaseModel):
    id: int
    entry_type: str
    days: Decimal
    balance_after: Decimal
    leave_request_id: Optional[int] = None
    actor_id: Optional[int] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LeaveBalanceResponse(BaseModel):
    employee_id: int
    leave_balance: Decimal
    history: List[LedgerEntryResponse] = []


class LeaveCreditsUpdate(BaseModel):
    leave_credits: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    note: Optional[str] = None
