"""
Employee Model.
An employee is both a requester (leave, cash advance, liquidation) and,
through their position, a potential reviewer.
"""
from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean, ForeignKey, Numeric, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from app.database import Base


class EmployeeRole(str, enum.Enum):
    """
    Coarse application roles.

    - ADMIN: may open the admin dashboard; reviewer actions additionally
      require the matching position permission.
    - EMPLOYEE: self-service access only.
    """
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"


class Employee(Base):
    __tablename__ = "employees"
    __table_args__ = (
        CheckConstraint("leave_balance >= 0", name="ck_employee_leave_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)

    role = Column(Enum(EmployeeRole), default=EmployeeRole.EMPLOYEE, nullable=False)
    position_id = Column(Integer, ForeignKey("positions.id"), nullable=True)

    # Leave credits in days. Only the balance ledger writes this column.
    leave_balance = Column(Numeric(10, 2), default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    position = relationship("Position", back_populates="employees")
    leave_requests = relationship(
        "LeaveRequest",
        foreign_keys="[LeaveRequest.employee_id]",
        back_populates="employee",
        cascade="all, delete-orphan",
    )
    ledger_entries = relationship(
        "LeaveLedgerEntry",
        foreign_keys="[LeaveLedgerEntry.employee_id]",
        back_populates="employee",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Employee {self.email} ({self.role.value})>"
