"""
Authorized Recipient Model - Brand Distribution Network
"""
from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, UniqueConstraint

from booking_engine.db.compat import utcnow
from booking_engine.db.database import Base


class AuthorizedRecipient(Base):
    """A distributor or retailer a brand may ship to.

    Maintained by network management, read-only for booking.
    """

    __tablename__ = "authorized_recipients"

    id = Column(Integer, primary_key=True, index=True)
    brand_id = Column(BigInteger, nullable=False, index=True)
    recipient_id = Column(BigInteger, nullable=False)
    recipient_name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("brand_id", "recipient_id", name="uq_brand_recipient"),
    )
