# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    position, employee,
    leave_request, leave_ledger,
    cash_advance, liquidation,
    ticket, audit_log
)

# Explicit class exports for cleaner imports
from .employee import Employee, EmployeeRole
from .position import Position, Permission, PermissionKey
from .leave_request import LeaveRequest, LeaveStatus
from .leave_ledger import LeaveLedgerEntry, LedgerEntryType
from .cash_advance import CashAdvance, CashAdvanceType, ApprovalStatus
from .liquidation import Liquidation, LiquidationItem, LiquidationAttachment, LiquidationStatus
from .ticket import Store, Ticket
from .audit_log import AuditLog

__all__ = [
    "Employee",
    "EmployeeRole",
    "Position",
    "Permission",
    "PermissionKey",
    "LeaveRequest",
    "LeaveStatus",
    "LeaveLedgerEntry",
    "LedgerEntryType",
    "CashAdvance",
    "CashAdvanceType",
    "ApprovalStatus",
    "Liquidation",
    "LiquidationItem",
    "LiquidationAttachment",
    "LiquidationStatus",
    "Store",
    "Ticket",
    "AuditLog",
]
