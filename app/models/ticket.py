from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from app.database import Base


class Ticket(Base):
    """Reference row for an incident ticket; ticket CRUD lives elsewhere."""
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    rcc_reference_number = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Store(Base):
    """Reference row for a store; store inventory and CRUD live elsewhere."""
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    store_code = Column(String, unique=True, index=True, nullable=False)
    store_name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
