"""
Cash Advance Service

Two independent reviewer gates. Level 1 acts first; level 2 becomes active
only once level 1 has approved. Rejection at either level is final for the
whole request. The overall status is derived from the two level fields.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import AccessDeniedError, InvalidTransitionError, NotFoundError, ValidationError
from app.core.security import clean_comment
from app.models.cash_advance import (
    ApprovalLevel,
    ApprovalStatus,
    CashAdvance,
    CashAdvanceType,
    ReviewAction,
    derive_overall_status,
)
from app.services.audit import AuditService
from app.services.authorization import AuthContext, AuthorizationGate
from app.services.base import BaseService, to_cents

ENTITY = "cash_advance"
EDITABLE_FIELDS = ("type", "amount", "purpose", "date_requested")
_DONE = (ApprovalStatus.APPROVED.value, ApprovalStatus.REJECTED.value)


class CashAdvanceService(BaseService):

    def __init__(self, db: Session):
        super().__init__(db)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active(self, advance_id: int) -> CashAdvance:
        """Fetch a cash advance that has not been soft deleted."""
        advance = self.db.get(CashAdvance, advance_id)
        if advance is None or advance.deleted_at is not None:
            raise NotFoundError("Cash advance", advance_id)
        return advance

    def get(self, ctx: AuthContext, advance_id: int) -> CashAdvance:
        advance = self.get_active(advance_id)
        if advance.requested_by != ctx.employee_id and not AuthorizationGate.can_view_all_cash_advances(ctx):
            raise AccessDeniedError("Forbidden: you may only view your own cash advances")
        return advance

    def list(
        self,
        ctx: AuthContext,
        status: Optional[ApprovalStatus] = None,
        requested_by: Optional[int] = None,
    ) -> List[CashAdvance]:
        if not AuthorizationGate.can_view_all_cash_advances(ctx):
            if requested_by is not None and requested_by != ctx.employee_id:
                raise AccessDeniedError("Forbidden: you may only view your own cash advances")
            requested_by = ctx.employee_id

        stmt = (
            select(CashAdvance)
            .where(CashAdvance.deleted_at.is_(None))
            .order_by(CashAdvance.id.desc())
        )
        if requested_by is not None:
            stmt = stmt.where(CashAdvance.requested_by == requested_by)
        if status is not None:
            stmt = stmt.where(CashAdvance.status == ApprovalStatus(status).value)
        return list(self.db.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Filing
    # ------------------------------------------------------------------

    def file(
        self,
        ctx: AuthContext,
        type: CashAdvanceType,
        amount: Decimal,
        date_requested: datetime,
        purpose: Optional[str] = None,
    ) -> CashAdvance:
        amount = to_cents(amount, "amount")
        if amount <= 0:
            raise ValidationError("Please provide a valid amount greater than 0.")

        advance = CashAdvance(
            requested_by=ctx.employee_id,
            type=CashAdvanceType(type).value,
            amount=amount,
            purpose=clean_comment(purpose),
            date_requested=date_requested,
            level1_status=ApprovalStatus.PENDING.value,
            level2_status=None,
        )
        with self.unit_of_work():
            self.db.add(advance)
            self.db.flush()
            self.audit.log_action(
                action="file_cash_advance",
                entity_type=ENTITY,
                entity_id=advance.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"type": advance.type, "amount": amount},
                after_state=self._snapshot(advance),
            )
        self.db.refresh(advance)
        self.log_info(f"Cash advance {advance.id} filed by employee {ctx.employee_id}", cash_advance_id=advance.id)
        return advance

    def edit_own(self, ctx: AuthContext, advance_id: int, changes: Dict[str, Any]) -> CashAdvance:
        """Requester edit, allowed until level 1 has acted."""
        advance = self.db.get(CashAdvance, advance_id)
        if advance is None or advance.deleted_at is not None or advance.requested_by != ctx.employee_id:
            raise NotFoundError("Cash advance", advance_id)
        if advance.level1_status != ApprovalStatus.PENDING.value:
            raise InvalidTransitionError(
                "Cannot edit cash advance request that has already been processed. "
                "Only pending requests can be edited.",
                current_state=advance.status,
            )
        values = self._edit_values(changes)

        before = self._snapshot(advance)
        expected = {
            "level1_status": ApprovalStatus.PENDING.value,
            "level2_status": None,
            "deleted_at": None,
        }
        with self.unit_of_work():
            self._guarded_update(CashAdvance, advance.id, expected, values)
            self.audit.log_action(
                action="edit_own_cash_advance",
                entity_type=ENTITY,
                entity_id=advance.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"fields": sorted(values)},
                before_state=before,
                after_state={**before, **values},
            )
        self.db.refresh(advance)
        return advance

    def edit(self, ctx: AuthContext, advance_id: int, changes: Dict[str, Any]) -> CashAdvance:
        """
        Administrative edit of the request details. Review state is never
        edited here; it only moves through `act`.
        """
        advance = self.get_active(advance_id)
        AuthorizationGate.authorize_cash_advance_edit(ctx, advance)
        values = self._edit_values(changes)
        if advance.liquidation is not None and {"type", "amount"} & set(values):
            raise InvalidTransitionError(
                "Cash advance has already been liquidated; its type and amount can no longer change.",
                current_state=advance.status,
            )

        before = self._snapshot(advance)
        expected = {
            "level1_status": advance.level1_status,
            "level2_status": advance.level2_status,
            "deleted_at": None,
        }
        with self.unit_of_work():
            self._guarded_update(CashAdvance, advance.id, expected, values)
            self.audit.log_action(
                action="edit_cash_advance",
                entity_type=ENTITY,
                entity_id=advance.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"fields": sorted(values)},
                before_state=before,
                after_state={**before, **values},
            )
        self.db.refresh(advance)
        self.log_info(f"Cash advance {advance.id} edited by employee {ctx.employee_id}", cash_advance_id=advance.id)
        return advance

    # ------------------------------------------------------------------
    # Two-level review
    # ------------------------------------------------------------------

    def act(
        self,
        ctx: AuthContext,
        advance_id: int,
        level: ApprovalLevel,
        action: ReviewAction,
        comment: Optional[str] = None,
    ) -> CashAdvance:
        level = ApprovalLevel(level)
        action = ReviewAction(action)

        advance = self.get_active(advance_id)
        AuthorizationGate.authorize_cash_advance_level(ctx, level, advance)
        self._require_active_level(advance, level)

        decision = ApprovalStatus.APPROVED.value if action == ReviewAction.APPROVE else ApprovalStatus.REJECTED.value
        now = datetime.now(timezone.utc)
        comment = clean_comment(comment)

        if level == ApprovalLevel.LEVEL1:
            values = {
                "level1_status": decision,
                "level1_reviewer_id": ctx.employee_id,
                "level1_reviewed_at": now,
                "level1_comment": comment,
            }
            if action == ReviewAction.APPROVE:
                # Hands the request over to level 2
                values["level2_status"] = ApprovalStatus.PENDING.value
        else:
            values = {
                "level2_status": decision,
                "level2_reviewer_id": ctx.employee_id,
                "level2_reviewed_at": now,
                "level2_comment": comment,
            }

        before = self._snapshot(advance)
        after = {**before, **values}
        after["status"] = derive_overall_status(after["level1_status"], after["level2_status"])
        expected = {
            "level1_status": advance.level1_status,
            "level2_status": advance.level2_status,
            "deleted_at": None,
        }
        with self.unit_of_work():
            self._guarded_update(CashAdvance, advance.id, expected, values)
            self.audit.log_action(
                action=f"{action.value}_cash_advance_{level.value}",
                entity_type=ENTITY,
                entity_id=advance.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"level": level.value, "comment": comment},
                before_state=before,
                after_state=after,
            )

        self.db.refresh(advance)
        self.log_info(
            f"Cash advance {advance.id} {level.value} {decision}; overall {advance.status}",
            cash_advance_id=advance.id, approval_level=level.value, overall_status=advance.status,
        )
        return advance

    def delete(self, ctx: AuthContext, advance_id: int) -> None:
        advance = self.db.get(CashAdvance, advance_id)
        if advance is None:
            raise NotFoundError("Cash advance", advance_id)
        AuthorizationGate.authorize_cash_advance_delete(ctx, advance)
        if advance.deleted_at is not None:
            raise InvalidTransitionError("Cash advance request is already deleted", current_state="deleted")

        before = self._snapshot(advance)
        now = datetime.now(timezone.utc)
        with self.unit_of_work():
            self._guarded_update(CashAdvance, advance.id, {"deleted_at": None}, {"deleted_at": now})
            self.audit.log_action(
                action="delete_cash_advance",
                entity_type=ENTITY,
                entity_id=advance.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                before_state=before,
                after_state={**before, "deleted_at": now},
            )
        self.log_info(f"Cash advance {advance_id} soft deleted", cash_advance_id=advance_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def active_level(advance: CashAdvance) -> Optional[ApprovalLevel]:
        """The level allowed to act next, or None once the request is terminal."""
        if advance.is_terminal:
            return None
        if advance.level1_status not in _DONE:
            return ApprovalLevel.LEVEL1
        if advance.level1_status == ApprovalStatus.APPROVED.value and advance.level2_status not in _DONE:
            return ApprovalLevel.LEVEL2
        return None

    def _require_active_level(self, advance: CashAdvance, level: ApprovalLevel) -> None:
        if self.active_level(advance) == level:
            return
        if advance.is_terminal:
            raise InvalidTransitionError("Request is already fully processed.", current_state=advance.status)
        if level == ApprovalLevel.LEVEL1:
            raise InvalidTransitionError("Level 1 review is already completed.", current_state=advance.level1_status)
        if advance.level1_status != ApprovalStatus.APPROVED.value:
            raise InvalidTransitionError(
                "Cannot process Level 2 until Level 1 is approved.", current_state=advance.level1_status
            )
        raise InvalidTransitionError("Level 2 review is already completed.", current_state=advance.level2_status)

    @staticmethod
    def _edit_values(changes: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        values: Dict[str, Any] = {}
        if "type" in changes:
            try:
                values["type"] = CashAdvanceType(changes["type"]).value
            except ValueError:
                raise ValidationError('Invalid type. Must be "personal" or "support".')
        if "amount" in changes:
            if changes["amount"] is None:
                raise ValidationError("Amount must be a positive number.")
            amount = to_cents(changes["amount"], "amount")
            if amount <= 0:
                raise ValidationError("Amount must be a positive number.")
            values["amount"] = amount
        if "purpose" in changes:
            values["purpose"] = clean_comment(changes["purpose"])
        if "date_requested" in changes:
            if changes["date_requested"] is None:
                raise ValidationError("date_requested cannot be cleared")
            values["date_requested"] = changes["date_requested"]
        if not values:
            raise ValidationError("No fields provided to update.")
        return values

    @staticmethod
    def _snapshot(advance: CashAdvance) -> dict:
        return {
            "type": advance.type,
            "amount": advance.amount,
            "status": advance.status,
            "level1_status": advance.level1_status,
            "level1_reviewer_id": advance.level1_reviewer_id,
            "level2_status": advance.level2_status,
            "level2_reviewer_id": advance.level2_reviewer_id,
            "deleted_at": advance.deleted_at,
        }
