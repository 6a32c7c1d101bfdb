"""
Payment and Invoice Models
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, DateTime, Float, Text, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid

from estate_billing.db.base import Base


class PaymentStatus(str, Enum):
    PAID = "paid"
    PENDING = "pending"
    FAILED = "failed"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=True, index=True)
    property_id = Column(Uuid, ForeignKey("properties.id"), nullable=True, index=True)

    amount = Column(Float, nullable=False)
    payment_date = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    payment_method = Column(String(50), nullable=True)  # bank_transfer, mpesa, cash
    status = Column(String(20), default=PaymentStatus.PAID.value, index=True)
    payment_type = Column(String(20), default="rent")
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="payments")
    property = relationship("Property", back_populates="payments")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)

    invoice_type = Column(String(50), nullable=False)  # rent, utility, deposit
    amount = Column(Float, nullable=False)
    due_date = Column(DateTime, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="invoices")
