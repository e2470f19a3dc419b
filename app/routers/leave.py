from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.limiter import limiter
from app.database import get_db
from app.models.leave_request import LeaveStatus
from app.schemas.leave import LeaveRequestCreate, LeaveRequestResponse, LeaveTransitionRequest
from app.routers.auth_deps import get_auth_context
from app.services.authorization import AuthContext, AuthorizationGate
from app.services.leave_service import LeaveService

router = APIRouter(
    prefix="/leave",
    tags=["Leave"]
)


@router.post("/requests", response_model=LeaveRequestResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def file_leave_request(
    request: Request,
    payload: LeaveRequestCreate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return LeaveService(db).create(
        ctx,
        employee_id=payload.employee_id,
        leave_type=payload.leave_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
    )


@router.get("/requests", response_model=List[LeaveRequestResponse])
def list_leave_requests(
    employee_id: Optional[int] = None,
    status: Optional[LeaveStatus] = None,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return LeaveService(db).list(ctx, employee_id=employee_id, status=status)


@router.get("/requests/{request_id}", response_model=LeaveRequestResponse)
def get_leave_request(
    request_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return LeaveService(db).get(ctx, request_id)


@router.post("/transition", response_model=LeaveRequestResponse)
@limiter.limit("30/minute")
def transition_leave_request(
    request: Request,
    payload: LeaveTransitionRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Approve, reject or revoke a leave request."""
    AuthorizationGate.ensure_reviewer(ctx, payload.reviewer_id)
    return LeaveService(db).transition(ctx, payload.id, payload.action, payload.comment)
