from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.utils import utc_now
from app.database import Base


class Customer(Base):
    """
    Tenant-scoped customer.

    Email and phone are soft dedup keys: external data often omits one or the
    other, so neither carries a unique constraint and lookups are find-or-create.
    """
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(64), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(64), nullable=True, index=True)
    status = Column(String(32), nullable=False, default="CUSTOMER")
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False)

    orders = relationship("Order", back_populates="customer")

    def __repr__(self):
        return f"<Customer(id={self.id}, company='{self.company_id}', email={self.email}, phone={self.phone})>"
