"""
Courier Pricing Model - Per-Brand Rate Card
"""
from sqlalchemy import Column, Integer, BigInteger, Numeric, Boolean, DateTime, CheckConstraint

from booking_engine.db.compat import utcnow
from booking_engine.db.database import Base


class CourierPricing(Base):
    """Negotiated per-box rate for a brand (minor units, may carry a fraction).

    Rows are deactivated instead of deleted so past quotes stay explainable.
    """

    __tablename__ = "courier_pricing"

    id = Column(Integer, primary_key=True, index=True)
    brand_id = Column(BigInteger, unique=True, nullable=False, index=True)
    rate_per_box = Column(Numeric(14, 4), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("rate_per_box > 0", name="ck_courier_pricing_rate_positive"),
    )
