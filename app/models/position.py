"""
Position-based permissions.
A position grants a set of permission keys; employees inherit the grants of
their position.
"""
from sqlalchemy import Column, Integer, String, Table, ForeignKey, Text
from sqlalchemy.orm import relationship
from app.database import Base


class PermissionKey:
    APPROVE_LEAVE = "approve_leave"
    MANAGE_LEAVE_CREDITS = "manage_leave_credits"
    APPROVE_CASH_ADVANCE_LEVEL1 = "approve_cash_advance_level1"
    APPROVE_CASH_ADVANCE_LEVEL2 = "approve_cash_advance_level2"
    MANAGE_CASH_FLOW = "manage_cash_flow"
    APPROVE_LIQUIDATIONS = "approve_liquidations"
    MANAGE_LIQUIDATION = "manage_liquidation"

    ALL = (
        APPROVE_LEAVE,
        MANAGE_LEAVE_CREDITS,
        APPROVE_CASH_ADVANCE_LEVEL1,
        APPROVE_CASH_ADVANCE_LEVEL2,
        MANAGE_CASH_FLOW,
        APPROVE_LIQUIDATIONS,
        MANAGE_LIQUIDATION,
    )


position_permissions = Table(
    "position_permissions",
    Base.metadata,
    Column("position_id", Integer, ForeignKey("positions.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class Permission(Base):
    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)

    def __repr__(self):
        return f"<Permission {self.key}>"


class Position(Base):
    __tablename__ = "positions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)

    permissions = relationship("Permission", secondary=position_permissions, lazy="selectin")
    employees = relationship("Employee", back_populates="position")

    def __repr__(self):
        return f"<Position {self.name}>"

    @property
    def permission_keys(self) -> frozenset:
        return frozenset(p.key for p in self.permissions)
