"""
Liquidation Models.
A liquidation reconciles the expenses actually spent against one approved
cash advance. Items and receipt attachments are owned by the liquidation.
"""
from sqlalchemy import Column, Integer, String, Numeric, Date, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class LiquidationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Expense columns summed into LiquidationItem.total
EXPENSE_FIELDS = ("jeep", "bus", "fx_van", "gas", "toll", "meals", "lodging", "others")


class Liquidation(Base):
    __tablename__ = "liquidations"

    id = Column(Integer, primary_key=True, index=True)
    cash_advance_id = Column(Integer, ForeignKey("cash_advances.id"), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="SET NULL"), nullable=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True)
    liquidation_date = Column(Date, nullable=False)

    # Fixed at creation from the items
    total_amount = Column(Numeric(12, 2), nullable=False)
    return_to_company = Column(Numeric(12, 2), default=0, nullable=False)
    reimbursement = Column(Numeric(12, 2), default=0, nullable=False)

    remarks = Column(Text, nullable=True)
    status = Column(String, default=LiquidationStatus.PENDING.value, nullable=False, index=True)
    reviewer_id = Column(Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewer_comment = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    cash_advance = relationship("CashAdvance", back_populates="liquidation")
    filer = relationship("Employee", foreign_keys=[user_id])
    reviewer = relationship("Employee", foreign_keys=[reviewer_id])
    store = relationship("Store")
    ticket = relationship("Ticket")
    items = relationship(
        "LiquidationItem",
        back_populates="liquidation",
        cascade="all, delete-orphan",
        order_by="LiquidationItem.id",
    )
    attachments = relationship(
        "LiquidationAttachment",
        back_populates="liquidation",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Liquidation {self.id} advance={self.cash_advance_id} total={self.total_amount} {self.status}>"


class LiquidationItem(Base):
    __tablename__ = "liquidation_items"

    id = Column(Integer, primary_key=True, index=True)
    liquidation_id = Column(Integer, ForeignKey("liquidations.id", ondelete="CASCADE"), nullable=False, index=True)
    from_destination = Column(String, default="", nullable=False)
    to_destination = Column(String, default="", nullable=False)
    jeep = Column(Numeric(12, 2), default=0, nullable=False)
    bus = Column(Numeric(12, 2), default=0, nullable=False)
    fx_van = Column(Numeric(12, 2), default=0, nullable=False)
    gas = Column(Numeric(12, 2), default=0, nullable=False)
    toll = Column(Numeric(12, 2), default=0, nullable=False)
    meals = Column(Numeric(12, 2), default=0, nullable=False)
    lodging = Column(Numeric(12, 2), default=0, nullable=False)
    others = Column(Numeric(12, 2), default=0, nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    remarks = Column(Text, nullable=True)

    liquidation = relationship("Liquidation", back_populates="items")


class LiquidationAttachment(Base):
    """Receipt metadata; the file itself lives under the configured upload directory."""
    __tablename__ = "liquidation_attachments"

    id = Column(Integer, primary_key=True, index=True)
    liquidation_id = Column(Integer, ForeignKey("liquidations.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    content_type = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    uploaded_by = Column(Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())

    liquidation = relationship("Liquidation", back_populates="attachments")
