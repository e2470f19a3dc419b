"""
Liquidation Service

Reconciles the expenses actually spent against one approved support cash
advance:

    delta = advance.amount - sum(item totals)
    delta > 0  -> employee returns delta to the company
    delta < 0  -> company reimburses -delta to the employee

Amounts are computed when the liquidation is filed and recomputed only when
the requester replaces the items of a still pending liquidation. The admin
edit changes metadata and the single approval status only.
"""
import os
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    AccessDeniedError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.core.security import clean_comment, sanitize_filename, sanitize_input
from app.models.cash_advance import ApprovalStatus, CashAdvanceType, ReviewAction
from app.models.liquidation import (
    EXPENSE_FIELDS,
    Liquidation,
    LiquidationAttachment,
    LiquidationItem,
    LiquidationStatus,
)
from app.models.ticket import Store, Ticket
from app.services.audit import AuditService
from app.services.authorization import AuthContext, AuthorizationGate
from app.services.base import BaseService, to_cents
from app.services.cash_advance_service import CashAdvanceService

ENTITY = "liquidation"
EDITABLE_FIELDS = ("store_id", "ticket_id", "liquidation_date", "remarks", "status")
OWN_EDITABLE_FIELDS = ("store_id", "ticket_id", "liquidation_date", "remarks", "items")
ZERO = Decimal("0")

# (original file name, content type, raw bytes)
ReceiptFile = Tuple[str, Optional[str], bytes]


def _amount(value: Any, field: str) -> Decimal:
    if value in (None, ""):
        return ZERO
    return to_cents(value, field)


def item_total(item: Mapping[str, Any]) -> Decimal:
    """Sum of an item's expense columns."""
    return sum((_amount(item.get(f), f) for f in EXPENSE_FIELDS), ZERO)


def reconcile(advance_amount: Decimal, total_amount: Decimal) -> Tuple[Decimal, Decimal]:
    """Return (return_to_company, reimbursement); at most one is non-zero."""
    delta = Decimal(advance_amount) - Decimal(total_amount)
    if delta > 0:
        return delta, ZERO
    if delta < 0:
        return ZERO, -delta
    return ZERO, ZERO


class LiquidationService(BaseService):

    def __init__(self, db: Session):
        super().__init__(db)
        self.audit = AuditService(db)
        self.cash_advances = CashAdvanceService(db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, ctx: AuthContext, liquidation_id: int) -> Liquidation:
        liquidation = self._get_or_404(Liquidation, liquidation_id, "Liquidation")
        if liquidation.user_id != ctx.employee_id and not AuthorizationGate.can_view_all_liquidations(ctx):
            raise AccessDeniedError("Forbidden: you may only view your own liquidations")
        return liquidation

    def list(self, ctx: AuthContext, status: Optional[LiquidationStatus] = None) -> List[Liquidation]:
        stmt = select(Liquidation).order_by(Liquidation.id.desc())
        if not AuthorizationGate.can_view_all_liquidations(ctx):
            stmt = stmt.where(Liquidation.user_id == ctx.employee_id)
        if status is not None:
            stmt = stmt.where(Liquidation.status == LiquidationStatus(status).value)
        return list(self.db.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Filing
    # ------------------------------------------------------------------

    def create(
        self,
        ctx: AuthContext,
        cash_advance_id: int,
        store_id: int,
        liquidation_date: date,
        items: Iterable[Mapping[str, Any]],
        ticket_id: Optional[int] = None,
        remarks: Optional[str] = None,
    ) -> Liquidation:
        items = list(items or [])
        if not items:
            raise ValidationError("At least one expense item is required")

        advance = self.cash_advances.get_active(cash_advance_id)
        if advance.requested_by != ctx.employee_id:
            raise AccessDeniedError("Forbidden: you may only liquidate your own cash advances")
        if advance.status != ApprovalStatus.APPROVED.value or advance.type != CashAdvanceType.SUPPORT.value:
            raise InvalidTransitionError(
                "Invalid cash advance. Must be an approved support cash advance.",
                current_state=advance.status,
            )
        if advance.liquidation is not None:
            raise ValidationError("A liquidation already exists for this cash advance.")
        self._require_store(store_id)
        self._require_ticket(ticket_id)

        line_items = self._build_items(items)
        total_amount = sum((li.total for li in line_items), ZERO)
        return_to_company, reimbursement = reconcile(advance.amount, total_amount)

        liquidation = Liquidation(
            cash_advance_id=advance.id,
            user_id=ctx.employee_id,
            store_id=store_id,
            ticket_id=ticket_id,
            liquidation_date=liquidation_date,
            total_amount=total_amount,
            return_to_company=return_to_company,
            reimbursement=reimbursement,
            remarks=clean_comment(remarks),
            status=LiquidationStatus.PENDING.value,
            items=line_items,
        )
        try:
            with self.unit_of_work():
                self.db.add(liquidation)
                self.db.flush()
                self.audit.log_action(
                    action="file_liquidation",
                    entity_type=ENTITY,
                    entity_id=liquidation.id,
                    user_id=ctx.employee_id,
                    user_role=ctx.role,
                    details={
                        "cash_advance_id": advance.id,
                        "advance_amount": advance.amount,
                        "item_count": len(line_items),
                    },
                    after_state=self._snapshot(liquidation),
                )
        except IntegrityError:
            # Unique cash_advance_id: someone filed for this advance concurrently
            raise ConcurrencyConflictError("A liquidation already exists for this cash advance.")

        self.db.refresh(liquidation)
        self.log_info(
            f"Liquidation {liquidation.id} filed: total {total_amount}, "
            f"return {return_to_company}, reimbursement {reimbursement}",
            liquidation_id=liquidation.id,
        )
        return liquidation

    def edit_own(self, ctx: AuthContext, liquidation_id: int, changes: Dict[str, Any]) -> Liquidation:
        """
        Requester edit of a pending liquidation. Supplying `items` replaces
        every line and recomputes the reconciliation against the advance.
        """
        liquidation = self.db.get(Liquidation, liquidation_id)
        if liquidation is None or liquidation.user_id != ctx.employee_id:
            raise NotFoundError("Liquidation", liquidation_id)
        if liquidation.status != LiquidationStatus.PENDING.value:
            raise InvalidTransitionError(
                "Cannot edit liquidation that has already been processed. Only pending liquidations can be edited.",
                current_state=liquidation.status,
            )

        unknown = set(changes) - set(OWN_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if not changes:
            raise ValidationError("No fields provided to update.")

        values = self._metadata_values(changes, store_required=True)
        new_items = None
        if "items" in changes:
            new_items = self._build_items(changes["items"] or [])
            if not new_items:
                raise ValidationError("At least one expense item is required")
            total_amount = sum((li.total for li in new_items), ZERO)
            return_to_company, reimbursement = reconcile(liquidation.cash_advance.amount, total_amount)
            values.update(
                total_amount=total_amount,
                return_to_company=return_to_company,
                reimbursement=reimbursement,
            )

        before = self._snapshot(liquidation)
        with self.unit_of_work():
            self._guarded_update(
                Liquidation, liquidation.id, {"status": LiquidationStatus.PENDING.value}, values
            )
            if new_items is not None:
                # delete-orphan removes the previous lines on flush
                liquidation.items = new_items
                self.db.flush()
            self.audit.log_action(
                action="edit_own_liquidation",
                entity_type=ENTITY,
                entity_id=liquidation.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"fields": sorted(changes)},
                before_state=before,
                after_state={**before, **values},
            )
        self.db.refresh(liquidation)
        return liquidation

    def upload_receipts(
        self, ctx: AuthContext, liquidation_id: int, files: Iterable[ReceiptFile]
    ) -> List[LiquidationAttachment]:
        """Store receipt files on disk and record one attachment per file."""
        liquidation = self._get_or_404(Liquidation, liquidation_id, "Liquidation")
        if liquidation.user_id != ctx.employee_id:
            raise AccessDeniedError("Forbidden: you may only upload receipts to your own liquidations")

        files = [f for f in files if f[0] and f[2]]
        if not files:
            raise ValidationError("No files provided")
        for name, _, content in files:
            if len(content) > settings.max_receipt_bytes:
                raise ValidationError(f"File {name} exceeds the {settings.max_receipt_bytes} byte limit")

        receipt_dir = os.path.join(settings.upload_dir, "receipts", str(liquidation.id))
        os.makedirs(receipt_dir, exist_ok=True)
        stamp = int(time.time() * 1000)

        attachments: List[LiquidationAttachment] = []
        written: List[str] = []
        try:
            for index, (name, content_type, content) in enumerate(files):
                stored_name = f"{stamp}-{index}-{sanitize_filename(name)}"
                path = os.path.join(receipt_dir, stored_name)
                with open(path, "wb") as fh:
                    fh.write(content)
                written.append(path)
                attachments.append(
                    LiquidationAttachment(
                        liquidation_id=liquidation.id,
                        file_name=name,
                        file_path=f"{liquidation.id}/{stored_name}",
                        content_type=content_type or "application/octet-stream",
                        file_size=len(content),
                        uploaded_by=ctx.employee_id,
                    )
                )
            with self.unit_of_work():
                self.db.add_all(attachments)
                self.db.flush()
                self.audit.log_action(
                    action="upload_liquidation_receipts",
                    entity_type=ENTITY,
                    entity_id=liquidation.id,
                    user_id=ctx.employee_id,
                    user_role=ctx.role,
                    details={"files": [a.file_path for a in attachments]},
                )
        except Exception:
            for path in written:
                if os.path.exists(path):
                    os.remove(path)
            raise

        for attachment in attachments:
            self.db.refresh(attachment)
        self.log_info(
            f"Uploaded {len(attachments)} receipt(s) to liquidation {liquidation.id}",
            liquidation_id=liquidation.id,
        )
        return attachments

    # ------------------------------------------------------------------
    # Single-level review
    # ------------------------------------------------------------------

    def review(
        self,
        ctx: AuthContext,
        liquidation_id: int,
        action: ReviewAction,
        comment: Optional[str] = None,
    ) -> Liquidation:
        action = ReviewAction(action)
        liquidation = self._get_or_404(Liquidation, liquidation_id, "Liquidation")
        AuthorizationGate.authorize_liquidation_review(ctx)
        if liquidation.status != LiquidationStatus.PENDING.value:
            raise InvalidTransitionError(
                "Liquidation has already been processed", current_state=liquidation.status
            )

        new_status = LiquidationStatus.APPROVED if action == ReviewAction.APPROVE else LiquidationStatus.REJECTED
        before = self._snapshot(liquidation)
        values = {
            "status": new_status.value,
            "reviewer_id": ctx.employee_id,
            "reviewed_at": datetime.now(timezone.utc),
            "reviewer_comment": clean_comment(comment),
        }
        with self.unit_of_work():
            self._guarded_update(
                Liquidation, liquidation.id, {"status": LiquidationStatus.PENDING.value}, values
            )
            self.audit.log_action(
                action=f"{action.value}_liquidation",
                entity_type=ENTITY,
                entity_id=liquidation.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                before_state=before,
                after_state={**before, **values},
            )
        self.db.refresh(liquidation)
        return liquidation

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def edit(self, ctx: AuthContext, liquidation_id: int, changes: Dict[str, Any]) -> Liquidation:
        """
        Update metadata and/or the approval status. Reconciliation amounts are
        left exactly as they are.
        """
        AuthorizationGate.authorize_liquidation_management(ctx, "edit")
        liquidation = self._get_or_404(Liquidation, liquidation_id, "Liquidation")

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if not changes:
            raise ValidationError("No fields provided to update.")

        values = self._metadata_values(changes, store_required=False)
        if "status" in changes:
            try:
                status = LiquidationStatus(changes["status"])
            except ValueError:
                raise ValidationError('Invalid status. Must be "pending", "approved", or "rejected".')
            values["status"] = status.value
            if status == LiquidationStatus.PENDING:
                values.update(reviewer_id=None, reviewed_at=None, reviewer_comment=None)
            elif liquidation.reviewed_at is None:
                values.update(reviewer_id=ctx.employee_id, reviewed_at=datetime.now(timezone.utc))

        before = self._snapshot(liquidation)
        with self.unit_of_work():
            self._guarded_update(Liquidation, liquidation.id, {"status": liquidation.status}, values)
            self.audit.log_action(
                action="edit_liquidation",
                entity_type=ENTITY,
                entity_id=liquidation.id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"fields": sorted(changes)},
                before_state=before,
                after_state={**before, **values},
            )
        self.db.refresh(liquidation)
        return liquidation

    def delete(self, ctx: AuthContext, liquidation_id: int) -> None:
        """Remove the liquidation with its items and attachments; the advance is untouched."""
        AuthorizationGate.authorize_liquidation_management(ctx, "delete")
        liquidation = self._get_or_404(Liquidation, liquidation_id, "Liquidation")

        before = self._snapshot(liquidation)
        counts = {"item_count": len(liquidation.items), "attachment_count": len(liquidation.attachments)}
        with self.unit_of_work():
            self.db.delete(liquidation)
            self.db.flush()
            self.audit.log_action(
                action="delete_liquidation",
                entity_type=ENTITY,
                entity_id=liquidation_id,
                user_id=ctx.employee_id,
                user_role=ctx.role,
                details={"cash_advance_id": before["cash_advance_id"], **counts},
                before_state=before,
            )
        self.log_info(f"Liquidation {liquidation_id} deleted", liquidation_id=liquidation_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _build_items(items: Iterable[Mapping[str, Any]]) -> List[LiquidationItem]:
        line_items = []
        for item in items:
            line = {f: _amount(item.get(f), f) for f in EXPENSE_FIELDS}
            line_items.append(
                LiquidationItem(
                    from_destination=sanitize_input(item.get("from_destination") or ""),
                    to_destination=sanitize_input(item.get("to_destination") or ""),
                    remarks=clean_comment(item.get("remarks")),
                    total=item_total(line),
                    **line,
                )
            )
        return line_items

    def _metadata_values(self, changes: Dict[str, Any], store_required: bool) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if "store_id" in changes:
            store_id = changes["store_id"] or None
            self._require_store(store_id, required=store_required)
            values["store_id"] = store_id
        if "ticket_id" in changes:
            self._require_ticket(changes["ticket_id"])
            values["ticket_id"] = changes["ticket_id"]
        if "liquidation_date" in changes:
            if changes["liquidation_date"] is None:
                raise ValidationError("liquidation_date cannot be cleared")
            values["liquidation_date"] = changes["liquidation_date"]
        if "remarks" in changes:
            values["remarks"] = clean_comment(changes["remarks"])
        return values

    def _require_store(self, store_id: Optional[int], required: bool = True) -> None:
        if store_id is None:
            if required:
                raise ValidationError("Store is required")
            return
        if self.db.get(Store, store_id) is None:
            raise ValidationError("Invalid store selected")

    def _require_ticket(self, ticket_id: Optional[int]) -> None:
        if ticket_id is not None and self.db.get(Ticket, ticket_id) is None:
            raise ValidationError("Invalid ticket selected")

    @staticmethod
    def _snapshot(liquidation: Liquidation) -> dict:
        return {
            "cash_advance_id": liquidation.cash_advance_id,
            "store_id": liquidation.store_id,
            "ticket_id": liquidation.ticket_id,
            "liquidation_date": liquidation.liquidation_date,
            "total_amount": liquidation.total_amount,
            "return_to_company": liquidation.return_to_company,
            "reimbursement": liquidation.reimbursement,
            "remarks": liquidation.remarks,
            "status": liquidation.status,
            "reviewer_id": liquidation.reviewer_id,
        }
