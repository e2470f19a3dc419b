"""
Leave Request Service

State machine for a single leave request:

    pending -> approved | rejected
    approved -> revoked

Approve debits the employee's balance and revoke credits back exactly what
was debited. Each transition is one transaction: a guarded UPDATE keyed on
the pre-state, the ledger movement and the audit entry.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    AccessDeniedError,
    InsufficientBalanceError,
    InvalidTransitionError,
    ValidationError,
)
from app.core.security import clean_comment, sanitize_input
from app.models.employee import Employee
from app.models.leave_ledger import LeaveLedgerEntry
from app.models.leave_request import LeaveAction, LeaveRequest, LeaveStatus
from app.services.audit import AuditService
from app.services.authorization import AuthContext, AuthorizationGate
from app.services.base import BaseService
from app.services.ledger import BalanceLedger

ENTITY = "leave_request"


def consumes_credits(leave_type: str) -> bool:
    """Unpaid and holiday leave never touch the balance."""
    non_credit = {t.lower() for t in settings.non_credit_leave_types}
    return leave_type.strip().lower() not in non_credit


class LeaveService(BaseService):

    def __init__(self, db: Session):
        super().__init__(db)
        self.ledger = BalanceLedger(db)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, ctx: AuthContext, request_id: int) -> LeaveRequest:
        leave = self._get_or_404(LeaveRequest, request_id, "Leave request")
        if leave.employee_id != ctx.employee_id and not AuthorizationGate.can_view_all_leave(ctx):
            raise AccessDeniedError("Forbidden: you may only view your own leave requests")
        return leave

    def list(
        self,
        ctx: AuthContext,
        employee_id: Optional[int] = None,
        status: Optional[LeaveStatus] = None,
    ) -> List[LeaveRequest]:
        if not AuthorizationGate.can_view_all_leave(ctx):
            if employee_id is not None and employee_id != ctx.employee_id:
                raise AccessDeniedError("Forbidden: you may only view your own leave requests")
            employee_id = ctx.employee_id

        stmt = select(LeaveRequest).order_by(LeaveRequest.id.desc())
        if employee_id is not None:
            stmt = stmt.where(LeaveRequest.employee_id == employee_id)
        if status is not None:
            stmt = stmt.where(LeaveRequest.status == LeaveStatus(status).value)
        return list(self.db.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        ctx: AuthContext,
        employee_id: int,
        leave_type: str,
        start_date: date,
        end_date: date,
        reason: str,
    ) -> LeaveRequest:
        AuthorizationGate.ensure_self_or_admin(ctx, employee_id, "file leave requests")
        self._get_or_404(Employee, employee_id, "Employee")

        leave_type = (leave_type or "").strip()
        reason = (reason or "").strip()
        if not leave_type or not reason:
            raise ValidationError("Missing required fields (leave_type, reason).")
        if end_date < start_date:
            raise ValidationError("End date must not be before start date.")

        duration = Decimal((end_date - start_date).days + 1)
        if consumes_credits(leave_type):
            balance = self.ledger.balance_of(employee_id)
            if balance < duration:
                raise InsufficientBalanceError(balance, duration)

        # Overlap: (StartA <= EndB) and (EndA >= StartB)
        overlapping = self.db.execute(
            select(LeaveRequest.id).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status == LeaveStatus.APPROVED.value,
                LeaveRequest.start_date <= end_date,
                LeaveRequest.end_date >= start_date,
            ).limit(1)
        ).first()
        if overlapping:
            raise ValidationError(
                "You already have an approved leave request that overlaps with these dates."
            )

        leave = LeaveRequest(
            employee_id=employee_id,
            leave_type=leave_type,
            start_date=start_date,
            end_date=end_date,
            reason=sanitize_input(reason),
            status=LeaveStatus.PENDING.value,
            debited_days=Decimal("0"),
        )
        with self.unit_of_work():
            self.db.add(leave)
            self.db.flush()
            self.audit.log_action(
                action="create_leave_request",
                entity_type=ENTITY,
                entity_id=leave.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"leave_type": leave_type, "duration": duration},
                after_state=self._snapshot(leave),
            )
        self.db.refresh(leave)
        self.log_info(f"Leave request {leave.id} filed for employee {employee_id}", leave_request_id=leave.id)
        return leave

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        ctx: AuthContext,
        request_id: int,
        action: LeaveAction,
        comment: Optional[str] = None,
    ) -> LeaveRequest:
        handlers = {
            LeaveAction.APPROVE: self.approve,
            LeaveAction.REJECT: self.reject,
            LeaveAction.REVOKE: self.revoke,
        }
        return handlers[LeaveAction(action)](ctx, request_id, comment)

    def approve(self, ctx: AuthContext, request_id: int, comment: Optional[str] = None) -> LeaveRequest:
        leave = self._get_or_404(LeaveRequest, request_id, "Leave request")
        AuthorizationGate.authorize_leave_review(ctx)
        self._require_status(leave, LeaveStatus.PENDING, "approve")

        days = Decimal(leave.duration_days) if consumes_credits(leave.leave_type) else Decimal("0")
        before = self._snapshot(leave)
        values = {
            "status": LeaveStatus.APPROVED.value,
            "reviewer_id": ctx.employee_id,
            "reviewed_at": datetime.now(timezone.utc),
            "reviewer_comment": clean_comment(comment),
            "debited_days": days,
        }

        with self.unit_of_work():
            self._guarded_update(LeaveRequest, leave.id, {"status": LeaveStatus.PENDING.value}, values)
            if days > 0:
                self.ledger.debit(
                    leave.employee_id, days, leave_request_id=leave.id, actor_id=ctx.employee_id,
                    note=f"Approved {leave.leave_type} leave #{leave.id}",
                )
            self.audit.log_action(
                action="approve_leave",
                entity_type=ENTITY,
                entity_id=leave.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"employee_id": leave.employee_id, "debited_days": days},
                before_state=before,
                after_state={**before, **values},
            )

        self.db.refresh(leave)
        self.log_info(f"Leave request {leave.id} approved", leave_request_id=leave.id, debited_days=str(days))
        return leave

    def reject(self, ctx: AuthContext, request_id: int, comment: Optional[str] = None) -> LeaveRequest:
        leave = self._get_or_404(LeaveRequest, request_id, "Leave request")
        AuthorizationGate.authorize_leave_review(ctx)
        self._require_status(leave, LeaveStatus.PENDING, "reject")

        before = self._snapshot(leave)
        values = {
            "status": LeaveStatus.REJECTED.value,
            "reviewer_id": ctx.employee_id,
            "reviewed_at": datetime.now(timezone.utc),
            "reviewer_comment": clean_comment(comment),
        }
        with self.unit_of_work():
            self._guarded_update(LeaveRequest, leave.id, {"status": LeaveStatus.PENDING.value}, values)
            self.audit.log_action(
                action="reject_leave",
                entity_type=ENTITY,
                entity_id=leave.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"employee_id": leave.employee_id},
                before_state=before,
                after_state={**before, **values},
            )

        self.db.refresh(leave)
        self.log_info(f"Leave request {leave.id} rejected", leave_request_id=leave.id)
        return leave

    def revoke(self, ctx: AuthContext, request_id: int, comment: Optional[str] = None) -> LeaveRequest:
        leave = self._get_or_404(LeaveRequest, request_id, "Leave request")
        AuthorizationGate.authorize_leave_review(ctx)
        if leave.status != LeaveStatus.APPROVED.value:
            raise InvalidTransitionError(
                "Only approved leave requests can be revoked.", current_state=leave.status
            )

        before = self._snapshot(leave)
        values = {
            "status": LeaveStatus.REVOKED.value,
            "reviewer_id": ctx.employee_id,
            "reviewed_at": datetime.now(timezone.utc),
            "reviewer_comment": clean_comment(comment) or "Leave revoked",
        }
        with self.unit_of_work():
            self._guarded_update(LeaveRequest, leave.id, {"status": LeaveStatus.APPROVED.value}, values)
            # Credit what was debited at approval, not what the dates say now
            debited = Decimal(
                self.db.execute(
                    select(LeaveRequest.debited_days).where(LeaveRequest.id == leave.id)
                ).scalar_one()
            )
            if debited > 0:
                self.ledger.credit(
                    leave.employee_id, debited, leave_request_id=leave.id, actor_id=ctx.employee_id,
                    note=f"Revoked {leave.leave_type} leave #{leave.id}",
                )
            self.audit.log_action(
                action="revoke_leave",
                entity_type=ENTITY,
                entity_id=leave.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"employee_id": leave.employee_id, "credited_days": debited},
                before_state=before,
                after_state={**before, **values},
            )

        self.db.refresh(leave)
        self.log_info(f"Leave request {leave.id} revoked", leave_request_id=leave.id)
        return leave

    # ------------------------------------------------------------------
    # Leave credits
    # ------------------------------------------------------------------

    def balance(self, ctx: AuthContext, employee_id: int) -> Tuple[Decimal, List[LeaveLedgerEntry]]:
        """Current balance and ledger history, newest first."""
        if employee_id != ctx.employee_id and not AuthorizationGate.can_view_all_leave(ctx):
            raise AccessDeniedError("Forbidden: you may only view your own leave balance")
        history = self.ledger.history(employee_id)
        return self.ledger.balance_of(employee_id), history

    def set_leave_credits(
        self,
        ctx: AuthContext,
        employee_id: int,
        leave_credits: Decimal,
        note: Optional[str] = None,
    ) -> Decimal:
        AuthorizationGate.authorize_leave_credit_adjustment(ctx)
        self._get_or_404(Employee, employee_id, "Employee")

        note = clean_comment(note) or "Leave credits updated"
        with self.unit_of_work():
            previous = self.ledger.balance_of(employee_id)
            new_balance = self.ledger.adjust(employee_id, leave_credits, actor_id=ctx.employee_id, note=note)
            self.audit.log_action(
                action="update_leave_credits",
                entity_type="employee",
                entity_id=employee_id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"note": note},
                before_state={"leave_balance": previous},
                after_state={"leave_balance": new_balance},
            )
        self.log_info(
            f"Leave credits for employee {employee_id} set to {new_balance}",
            employee_id=employee_id, previous=str(previous), balance=str(new_balance),
        )
        return new_balance

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_status(leave: LeaveRequest, expected: LeaveStatus, verb: str) -> None:
        if leave.status != expected.value:
            raise InvalidTransitionError(
                f"Cannot {verb} a leave request that is {leave.status}; it must be {expected.value}.",
                current_state=leave.status,
            )

    @staticmethod
    def _snapshot(leave: LeaveRequest) -> dict:
        return {
            "status": leave.status,
            "reviewer_id": leave.reviewer_id,
            "reviewed_at": leave.reviewed_at,
            "reviewer_comment": leave.reviewer_comment,
            "debited_days": leave.debited_days,
        }
