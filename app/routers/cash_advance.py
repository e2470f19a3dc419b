from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.limiter import limiter
from app.database import get_db
from app.models.cash_advance import ApprovalStatus
from app.schemas.cash_advance import (
    CashAdvanceCreate,
    CashAdvanceResponse,
    CashAdvanceTransitionRequest,
    CashAdvanceUpdate,
)
from app.routers.auth_deps import get_auth_context
from app.services.authorization import AuthContext, AuthorizationGate
from app.services.cash_advance_service import CashAdvanceService

router = APIRouter(
    prefix="/cash-advances",
    tags=["Cash Advances"]
)


@router.post("", response_model=CashAdvanceResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def file_cash_advance(
    request: Request,
    payload: CashAdvanceCreate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return CashAdvanceService(db).file(
        ctx,
        type=payload.type,
        amount=payload.amount,
        date_requested=payload.date_requested,
        purpose=payload.purpose,
    )


@router.get("", response_model=List[CashAdvanceResponse])
def list_cash_advances(
    status: Optional[ApprovalStatus] = None,
    requested_by: Optional[int] = None,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return CashAdvanceService(db).list(ctx, status=status, requested_by=requested_by)


@router.get("/{advance_id}", response_model=CashAdvanceResponse)
def get_cash_advance(
    advance_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return CashAdvanceService(db).get(ctx, advance_id)


@router.post("/transition", response_model=CashAdvanceResponse)
@limiter.limit("30/minute")
def transition_cash_advance(
    request: Request,
    payload: CashAdvanceTransitionRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Approve or reject one level of a cash advance request."""
    AuthorizationGate.ensure_reviewer(ctx, payload.reviewer_id)
    return CashAdvanceService(db).act(ctx, payload.id, payload.level, payload.action, payload.comment)


@router.delete("/{advance_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_cash_advance(
    advance_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    CashAdvanceService(db).delete(ctx, advance_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{advance_id}/own", response_model=CashAdvanceResponse)
def edit_own_cash_advance(
    advance_id: int,
    payload: CashAdvanceUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Requester edit of their own request before level 1 has acted."""
    return CashAdvanceService(db).edit_own(ctx, advance_id, payload.model_dump(exclude_unset=True))


@router.put("/{advance_id}", response_model=CashAdvanceResponse)
def edit_cash_advance(
    advance_id: int,
    payload: CashAdvanceUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return CashAdvanceService(db).edit(ctx, advance_id, payload.model_dump(exclude_unset=True))
