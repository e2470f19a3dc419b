"""
Authorization Gate.

Every reviewer-facing operation receives an explicit, request-scoped
AuthContext and asks the gate whether the caller may perform it. The gate
only reads the context and the target entity; it never touches the session.
"""
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from app.core.exceptions import AccessDeniedError
from app.models.cash_advance import ApprovalLevel, CashAdvance
from app.models.employee import Employee, EmployeeRole
from app.models.position import PermissionKey

logger = logging.getLogger(__name__)

CONFIDENTIAL_REQUESTER_POSITION = "operations manager"
# Substrings of the caller's position name allowed to process confidential advances
CONFIDENTIAL_REVIEWER_POSITIONS = ("hr", "accounting", "operations manager")
CONFIDENTIAL_DELETER_POSITIONS = CONFIDENTIAL_REVIEWER_POSITIONS + ("managing director",)

LEVEL_PERMISSIONS = {
    ApprovalLevel.LEVEL1: PermissionKey.APPROVE_CASH_ADVANCE_LEVEL1,
    ApprovalLevel.LEVEL2: PermissionKey.APPROVE_CASH_ADVANCE_LEVEL2,
}


@dataclass(frozen=True)
class AuthContext:
    employee_id: int
    role: EmployeeRole
    position_name: str = ""
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_employee(cls, employee: Employee) -> "AuthContext":
        position = employee.position
        return cls(
            employee_id=employee.id,
            role=employee.role,
            position_name=position.name if position else "",
            permissions=position.permission_keys if position else frozenset(),
        )

    @property
    def is_admin(self) -> bool:
        return self.role == EmployeeRole.ADMIN

    def has_permission(self, key: str) -> bool:
        return key in self.permissions

    def has_any_permission(self, keys: Iterable[str]) -> bool:
        return any(k in self.permissions for k in keys)

    def position_matches(self, fragments: Iterable[str]) -> bool:
        name = self.position_name.lower()
        return any(fragment in name for fragment in fragments)


class AuthorizationGate:
    """Static rule table for reviewer actions."""

    @staticmethod
    def require(ctx: AuthContext, permission: str, action: str, admin_only: bool = False) -> None:
        if admin_only and not ctx.is_admin:
            logger.warning(
                f"Employee {ctx.employee_id} denied '{action}': admin role required",
                extra={"employee_id": ctx.employee_id, "action": action},
            )
            raise AccessDeniedError(f"Forbidden: only administrators may {action}")
        if not ctx.has_permission(permission):
            logger.warning(
                f"Employee {ctx.employee_id} denied '{action}': missing {permission}",
                extra={"employee_id": ctx.employee_id, "action": action, "permission": permission},
            )
            raise AccessDeniedError(f"Forbidden: you do not have permission to {action}")

    @staticmethod
    def ensure_reviewer(ctx: AuthContext, reviewer_id: Optional[int]) -> None:
        """A client-supplied reviewer id must name the authenticated caller."""
        if reviewer_id is not None and reviewer_id != ctx.employee_id:
            raise AccessDeniedError("Forbidden: reviewer_id does not match the authenticated user")

    @staticmethod
    def ensure_self_or_admin(ctx: AuthContext, employee_id: int, action: str) -> None:
        if employee_id != ctx.employee_id and not ctx.is_admin:
            raise AccessDeniedError(f"Forbidden: you may only {action} for yourself")

    # --- Leave ---

    @classmethod
    def authorize_leave_review(cls, ctx: AuthContext) -> None:
        cls.require(ctx, PermissionKey.APPROVE_LEAVE, "review leave requests", admin_only=True)

    @classmethod
    def authorize_leave_credit_adjustment(cls, ctx: AuthContext) -> None:
        cls.require(ctx, PermissionKey.MANAGE_LEAVE_CREDITS, "update leave credits")

    @staticmethod
    def can_view_all_leave(ctx: AuthContext) -> bool:
        return ctx.is_admin and ctx.has_any_permission(
            (PermissionKey.APPROVE_LEAVE, PermissionKey.MANAGE_LEAVE_CREDITS)
        )

    # --- Cash advance ---

    @staticmethod
    def is_confidential(advance: CashAdvance) -> bool:
        requester = advance.requester
        if requester is None or requester.position is None:
            return False
        return requester.position.name.lower() == CONFIDENTIAL_REQUESTER_POSITION

    @classmethod
    def authorize_cash_advance_level(cls, ctx: AuthContext, level: ApprovalLevel, advance: CashAdvance) -> None:
        label = "Level 1" if level == ApprovalLevel.LEVEL1 else "Level 2"
        cls.require(
            ctx,
            LEVEL_PERMISSIONS[level],
            f"{label} approve/reject cash advance requests",
            admin_only=True,
        )
        if cls.is_confidential(advance) and not ctx.position_matches(CONFIDENTIAL_REVIEWER_POSITIONS):
            raise AccessDeniedError(
                "Forbidden: Operations Manager cash advances are confidential and can only be "
                "processed by HR or Accounting"
            )

    @classmethod
    def authorize_cash_advance_delete(cls, ctx: AuthContext, advance: CashAdvance) -> None:
        cls.require(ctx, PermissionKey.MANAGE_CASH_FLOW, "delete cash advance requests")
        if cls.is_confidential(advance) and not ctx.position_matches(CONFIDENTIAL_DELETER_POSITIONS):
            raise AccessDeniedError(
                "Forbidden: Operations Manager cash advances are confidential and can only be "
                "deleted by HR, Accounting, or Managing Director"
            )

    @classmethod
    def authorize_cash_advance_edit(cls, ctx: AuthContext, advance: CashAdvance) -> None:
        cls.require(ctx, PermissionKey.MANAGE_CASH_FLOW, "edit cash advance requests", admin_only=True)
        if cls.is_confidential(advance) and not ctx.position_matches(CONFIDENTIAL_DELETER_POSITIONS):
            raise AccessDeniedError(
                "Forbidden: Operations Manager cash advances are confidential and can only be "
                "edited by HR, Accounting, or Managing Director"
            )

    @staticmethod
    def can_view_all_cash_advances(ctx: AuthContext) -> bool:
        return ctx.is_admin and ctx.has_any_permission(
            (
                PermissionKey.APPROVE_CASH_ADVANCE_LEVEL1,
                PermissionKey.APPROVE_CASH_ADVANCE_LEVEL2,
                PermissionKey.MANAGE_CASH_FLOW,
            )
        )

    # --- Liquidation ---

    @classmethod
    def authorize_liquidation_review(cls, ctx: AuthContext) -> None:
        cls.require(ctx, PermissionKey.APPROVE_LIQUIDATIONS, "approve/reject liquidations")

    @classmethod
    def authorize_liquidation_management(cls, ctx: AuthContext, verb: str) -> None:
        cls.require(ctx, PermissionKey.MANAGE_LIQUIDATION, f"{verb} liquidation requests", admin_only=True)

    @staticmethod
    def can_view_all_liquidations(ctx: AuthContext) -> bool:
        return ctx.has_any_permission(
            (PermissionKey.APPROVE_LIQUIDATIONS, PermissionKey.MANAGE_LIQUIDATION)
        )
