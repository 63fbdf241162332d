"""
Part Approval Model - Catalog Approval Workflow
"""
import enum
from sqlalchemy import Column, Integer, BigInteger, String, Text, DateTime, Numeric, Enum as SQLEnum, Index

from booking_engine.db.compat import utcnow
from booking_engine.db.database import Base


class PartApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class PartApproval(Base):
    """One review round for a (brand, part).

    A rejected part is resubmitted as a new row; the newest row for the pair
    decides whether the part may ship.
    """

    __tablename__ = "part_approvals"

    id = Column(Integer, primary_key=True, index=True)
    brand_id = Column(BigInteger, nullable=False)
    part_id = Column(String(64), nullable=False)
    part_name = Column(String(200), nullable=False)
    category = Column(String(50), nullable=True)
    submitted_price = Column(Numeric(14, 2), nullable=True)

    status = Column(SQLEnum(PartApprovalStatus), nullable=False, default=PartApprovalStatus.PENDING, index=True)
    rejection_reason = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    # Usage counters, bumped when a shipment carrying the part is debited
    times_shipped = Column(Integer, nullable=False, default=0)
    units_shipped = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_part_approvals_brand_part", "brand_id", "part_id"),
    )
