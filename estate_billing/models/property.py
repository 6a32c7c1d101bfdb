from sqlalchemy import Column, String, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship
import uuid

from estate_billing.db.base import Base, TimestampMixin


class Property(Base, TimestampMixin):
    __tablename__ = "properties"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)

    # Relationships
    units = relationship(
        "Unit",
        back_populates="property",
        cascade="all, delete-orphan",
        order_by="Unit.unit_number",
    )
    payments = relationship("Payment", back_populates="property")


class Unit(Base, TimestampMixin):
    __tablename__ = "units"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    property_id = Column(Uuid, ForeignKey("properties.id"), nullable=False, index=True)
    unit_number = Column(String(50), nullable=False)

    # Declared before the relationships, `property` below shadows the builtin
    @property
    def current_tenant(self):
        """First active tenant, occupancy is never stored on the unit itself"""
        for tenant in self.tenants:
            if tenant.is_active:
                return tenant
        return None

    @property
    def is_occupied(self) -> bool:
        return self.current_tenant is not None

    # Relationships
    property = relationship("Property", back_populates="units")
    tenants = relationship("Tenant", back_populates="unit", order_by="Tenant.created_at")
    utility_bills = relationship("UtilityBill", back_populates="unit")
