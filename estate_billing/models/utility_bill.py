"""
Utility Bill Model - one metered bill per unit per billing month
"""
from sqlalchemy import (
    CheckConstraint, Column, Date, Float, ForeignKey, Integer, String, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import relationship
import uuid

from estate_billing.db.base import Base, TimestampMixin


class UtilityBill(Base, TimestampMixin):
    __tablename__ = "utility_bills"
    __table_args__ = (
        UniqueConstraint("unit_id", "billing_month"),
        CheckConstraint("arrears_bf >= 0", name="arrears_non_negative"),
        CheckConstraint("previous_reading >= 0", name="previous_reading_non_negative"),
        CheckConstraint("units_consumed >= 0", name="units_consumed_non_negative"),
        CheckConstraint("rate > 0", name="rate_positive"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    unit_id = Column(Uuid, ForeignKey("units.id"), nullable=False, index=True)
    billing_month = Column(Date, nullable=False, index=True)  # always the 1st of the month

    arrears_bf = Column(Float, nullable=False, default=0.0)
    previous_reading = Column(Float, nullable=False, default=0.0)
    current_reading = Column(Float, nullable=False)
    units_consumed = Column(Float, nullable=False, default=0.0)
    rate = Column(Float, nullable=False)
    total_amount = Column(Float, nullable=False, default=0.0)

    # Bumped on every update, edits against an older version are rejected
    version = Column(Integer, nullable=False, default=1)
    recorded_by = Column(String(255), nullable=True)

    unit = relationship("Unit", back_populates="utility_bills")
