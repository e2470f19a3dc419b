from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class LedgerEntryType(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"
    ADJUSTMENT = "adjustment"


class LeaveLedgerEntry(Base):
    """Append-only journal of every leave-balance movement."""
    __tablename__ = "leave_ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id", ondelete="SET NULL"), nullable=True, index=True)
    entry_type = Column(String, nullable=False)
    days = Column(Numeric(10, 2), nullable=False)  # signed: debits negative
    balance_after = Column(Numeric(10, 2), nullable=False)
    actor_id = Column(Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    employee = relationship("Employee", foreign_keys=[employee_id], back_populates="ledger_entries")
