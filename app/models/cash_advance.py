"""
Cash Advance Model.

Two independent reviewer levels; the overall status is derived from the two
level fields and is never stored on its own.
"""
from typing import Optional
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Text, case, or_, and_
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class CashAdvanceType(str, enum.Enum):
    PERSONAL = "personal"
    SUPPORT = "support"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalLevel(str, enum.Enum):
    LEVEL1 = "level1"
    LEVEL2 = "level2"


class ReviewAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


def derive_overall_status(level1_status: Optional[str], level2_status: Optional[str]) -> str:
    if ApprovalStatus.REJECTED.value in (level1_status, level2_status):
        return ApprovalStatus.REJECTED.value
    if level1_status == ApprovalStatus.APPROVED.value and level2_status == ApprovalStatus.APPROVED.value:
        return ApprovalStatus.APPROVED.value
    return ApprovalStatus.PENDING.value


class CashAdvance(Base):
    __tablename__ = "cash_advances"

    id = Column(Integer, primary_key=True, index=True)
    requested_by = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    purpose = Column(Text, nullable=True)
    date_requested = Column(DateTime(timezone=True), nullable=False)

    level1_status = Column(String, default=ApprovalStatus.PENDING.value, nullable=True)
    level1_reviewer_id = Column(Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    level1_reviewed_at = Column(DateTime(timezone=True), nullable=True)
    level1_comment = Column(Text, nullable=True)

    # Stays NULL until level 1 approves
    level2_status = Column(String, nullable=True)
    level2_reviewer_id = Column(Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    level2_reviewed_at = Column(DateTime(timezone=True), nullable=True)
    level2_comment = Column(Text, nullable=True)

    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    requester = relationship("Employee", foreign_keys=[requested_by])
    level1_reviewer = relationship("Employee", foreign_keys=[level1_reviewer_id])
    level2_reviewer = relationship("Employee", foreign_keys=[level2_reviewer_id])
    liquidation = relationship("Liquidation", back_populates="cash_advance", uselist=False)

    @hybrid_property
    def status(self) -> str:
        return derive_overall_status(self.level1_status, self.level2_status)

    @status.expression
    def status(cls):
        return case(
            (
                or_(
                    cls.level1_status == ApprovalStatus.REJECTED.value,
                    cls.level2_status == ApprovalStatus.REJECTED.value,
                ),
                ApprovalStatus.REJECTED.value,
            ),
            (
                and_(
                    cls.level1_status == ApprovalStatus.APPROVED.value,
                    cls.level2_status == ApprovalStatus.APPROVED.value,
                ),
                ApprovalStatus.APPROVED.value,
            ),
            else_=ApprovalStatus.PENDING.value,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != ApprovalStatus.PENDING.value

    def __repr__(self):
        return f"<CashAdvance {self.id} {self.type} {self.amount} L1={self.level1_status} L2={self.level2_status}>"
