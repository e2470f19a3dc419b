from sqlalchemy import Column, Integer, String, Date, Numeric, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVOKED = "revoked"


class LeaveAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVOKE = "revoke"


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type = Column(String, nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reason = Column(Text, nullable=False)
    # Stored as the plain enum value so guarded updates can compare on it directly
    status = Column(String, default=LeaveStatus.PENDING.value, nullable=False, index=True)

    reviewer_id = Column(Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    reviewer_comment = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    # Days debited from the balance at approval; revoke credits back exactly this.
    debited_days = Column(Numeric(10, 2), default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    employee = relationship("Employee", foreign_keys=[employee_id], back_populates="leave_requests")
    reviewer = relationship("Employee", foreign_keys=[reviewer_id])

    @property
    def duration_days(self) -> int:
        """Inclusive calendar-day count of the requested range."""
        return (self.end_date - self.start_date).days + 1

    def __repr__(self):
        return f"<LeaveRequest {self.id} {self.leave_type} {self.status}>"
