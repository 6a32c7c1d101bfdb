"""
Tenant Model - occupant of a unit
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid

from estate_billing.db.base import Base


class Tenant(Base):
    """
    Tenant living in a unit.
    A unit's current tenant is its first active tenant.
    """
    __tablename__ = "tenants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    unit_id = Column(Uuid, ForeignKey("units.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    unit = relationship("Unit", back_populates="tenants")
    payments = relationship("Payment", back_populates="tenant", order_by="Payment.payment_date.desc()")
    invoices = relationship("Invoice", back_populates="tenant")
