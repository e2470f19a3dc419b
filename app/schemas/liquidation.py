from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from app.models.cash_advance import ReviewAction
from app.models.liquidation import LiquidationStatus


def _expense():
    return Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)


class LiquidationItemCreate(BaseModel):
    from_destination: str = ""
    to_destination: str = ""
    jeep: Decimal = _expense()
    bus: Decimal = _expense()
    fx_van: Decimal = _expense()
    gas: Decimal = _expense()
    toll: Decimal = _expense()
    meals: Decimal = _expense()
    lodging: Decimal = _expense()
    others: Decimal = _expense()
    remarks: Optional[str] = None


class LiquidationItemResponse(LiquidationItemCreate):
    id: int
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class LiquidationAttachmentResponse(BaseModel):
    id: int
    file_name: str
    file_path: str
    content_type: Optional[str] = None
    file_size: Optional[int] = None
    uploaded_by: Optional[int] = None
    uploaded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LiquidationCreate(BaseModel):
    cash_advance_id: int
    store_id: int
    ticket_id: Optional[int] = None
    liquidation_date: date
    remarks: Optional[str] = None
    items: List[LiquidationItemCreate]


class LiquidationUpdate(BaseModel):
    """Only the fields present in the request body are applied."""
    store_id: Optional[int] = None
    ticket_id: Optional[int] = None
    liquidation_date: Optional[date] = None
    remarks: Optional[str] = None
    status: Optional[LiquidationStatus] = None


class LiquidationOwnUpdate(BaseModel):
    """Requester edit of a pending liquidation; `items` replaces every line."""
    store_id: Optional[int] = None
    ticket_id: Optional[int] = None
    liquidation_date: Optional[date] = None
    remarks: Optional[str] = None
    items: Optional[List[LiquidationItemCreate]] = None


class LiquidationReviewRequest(BaseModel):
    action: ReviewAction
    comment: Optional[str] = None


class LiquidationResponse(BaseModel):
    id: int
    cash_advance_id: int
    user_id: int
    store_id: Optional[int] = None
    ticket_id: Optional[int] = None
    liquidation_date: date
    total_amount: Decimal
    return_to_company: Decimal
    reimbursement: Decimal
    remarks: Optional[str] = None
    status: str
    reviewer_id: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    reviewer_comment: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[LiquidationItemResponse] = []
    attachments: List[LiquidationAttachmentResponse] = []

    model_config = ConfigDict(from_attributes=True)
