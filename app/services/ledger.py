"""
Balance Ledger

Sole writer of Employee.leave_balance. Every movement is a guarded UPDATE
plus a journal row. The ledger never commits: it flushes into the caller's
transaction so the status change that triggered a movement and the movement
itself are persisted together or not at all.
"""
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.exceptions import ConcurrencyConflictError, InsufficientBalanceError, ValidationError
from app.models.employee import Employee
from app.models.leave_ledger import LeaveLedgerEntry, LedgerEntryType
from app.services.base import CENT, BaseService

Days = Union[Decimal, int, float, str]


def to_days(value: Days) -> Decimal:
    try:
        days = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid day count: {value!r}")
    if not days.is_finite() or days < 0:
        raise ValidationError("Day count must be a non-negative number")
    try:
        cents = days.quantize(CENT)
    except InvalidOperation:
        raise ValidationError(f"Invalid day count: {value!r}")
    if cents != days:
        raise ValidationError("Day count cannot have more than two decimal places")
    return cents


class BalanceLedger(BaseService):

    def __init__(self, db: Session):
        super().__init__(db)

    def balance_of(self, employee_id: int, for_update: bool = False) -> Decimal:
        stmt = select(Employee.leave_balance).where(Employee.id == employee_id)
        if for_update:
            # Row lock on backends that support it; SQLite ignores the clause
            stmt = stmt.with_for_update()
        return Decimal(self.db.execute(stmt).scalar_one())

    def debit(
        self,
        employee_id: int,
        days: Days,
        leave_request_id: Optional[int] = None,
        actor_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Decimal:
        """Decrement the balance; raises InsufficientBalanceError instead of going negative."""
        days = to_days(days)
        employee = self._get_or_404(Employee, employee_id, "Employee")

        result = self.db.execute(
            update(Employee)
            .where(Employee.id == employee_id, Employee.leave_balance >= days)
            .values(leave_balance=Employee.leave_balance - days)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(employee, ["leave_balance"])
        if result.rowcount != 1:
            raise InsufficientBalanceError(self.balance_of(employee_id), days)

        new_balance = self.balance_of(employee_id)
        self._journal(employee_id, LedgerEntryType.DEBIT, -days, new_balance, leave_request_id, actor_id, note)
        self.log_info(
            f"Debited {days} day(s) from employee {employee_id}",
            employee_id=employee_id, days=str(days), balance=str(new_balance),
        )
        return new_balance

    def credit(
        self,
        employee_id: int,
        days: Days,
        leave_request_id: Optional[int] = None,
        actor_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Decimal:
        days = to_days(days)
        employee = self._get_or_404(Employee, employee_id, "Employee")

        self.db.execute(
            update(Employee)
            .where(Employee.id == employee_id)
            .values(leave_balance=Employee.leave_balance + days)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(employee, ["leave_balance"])

        new_balance = self.balance_of(employee_id)
        self._journal(employee_id, LedgerEntryType.CREDIT, days, new_balance, leave_request_id, actor_id, note)
        self.log_info(
            f"Credited {days} day(s) to employee {employee_id}",
            employee_id=employee_id, days=str(days), balance=str(new_balance),
        )
        return new_balance

    def adjust(
        self,
        employee_id: int,
        new_balance: Days,
        actor_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Decimal:
        """
        Administrative reset of the balance to an absolute value. The UPDATE is
        keyed on the balance that was read, so the journaled delta is exact.
        """
        target = to_days(new_balance)
        employee = self._get_or_404(Employee, employee_id, "Employee")
        previous = self.balance_of(employee_id, for_update=True)

        result = self.db.execute(
            update(Employee)
            .where(
                Employee.id == employee_id,
                func.round(Employee.leave_balance, 2, type_=Employee.leave_balance.type) == previous,
            )
            .values(leave_balance=target)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(employee, ["leave_balance"])
        if result.rowcount != 1:
            self.log_warning(
                f"Leave credit adjustment for employee {employee_id} lost the race",
                employee_id=employee_id,
            )
            raise ConcurrencyConflictError()

        self._journal(
            employee_id, LedgerEntryType.ADJUSTMENT, target - previous, target, None, actor_id, note
        )
        return target

    def history(self, employee_id: int) -> List[LeaveLedgerEntry]:
        self._get_or_404(Employee, employee_id, "Employee")
        return list(
            self.db.execute(
                select(LeaveLedgerEntry)
                .where(LeaveLedgerEntry.employee_id == employee_id)
                .order_by(LeaveLedgerEntry.id.desc())
            ).scalars()
        )

    def _journal(self, employee_id, entry_type, delta, balance_after, leave_request_id, actor_id, note):
        self.db.add(
            LeaveLedgerEntry(
                employee_id=employee_id,
                leave_request_id=leave_request_id,
                entry_type=entry_type.value,
                days=delta,
                balance_after=balance_after,
                actor_id=actor_id,
                note=note,
            )
        )
        self.db.flush()
