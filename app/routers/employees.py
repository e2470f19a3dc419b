from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.leave import LeaveBalanceResponse, LeaveCreditsUpdate, LedgerEntryResponse
from app.routers.auth_deps import get_auth_context
from app.services.authorization import AuthContext
from app.services.leave_service import LeaveService

router = APIRouter(
    prefix="/employees",
    tags=["Employees"]
)


def _balance_response(employee_id, balance, history) -> LeaveBalanceResponse:
    return LeaveBalanceResponse(
        employee_id=employee_id,
        leave_balance=balance,
        history=[LedgerEntryResponse.model_validate(e) for e in history],
    )


@router.get("/{employee_id}/leave-balance", response_model=LeaveBalanceResponse)
def get_leave_balance(
    employee_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    balance, history = LeaveService(db).balance(ctx, employee_id)
    return _balance_response(employee_id, balance, history)


@router.put("/{employee_id}/leave-credits", response_model=LeaveBalanceResponse)
def update_leave_credits(
    employee_id: int,
    payload: LeaveCreditsUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    service = LeaveService(db)
    balance = service.set_leave_credits(ctx, employee_id, payload.leave_credits, payload.note)
    return _balance_response(employee_id, balance, service.ledger.history(employee_id))
