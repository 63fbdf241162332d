"""
Shipment Model - Booked Consignments and Their Status History
"""
from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, DateTime, ForeignKey, JSON,
    Enum as SQLEnum, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from booking_engine.db.compat import utcnow
from booking_engine.db.database import Base
from booking_engine.domain.shipment_states import ShipmentStatus


class Shipment(Base):
    """A brand's consignment of boxes to one authorized recipient.

    From DEBITED onwards the shipment references exactly one SHIPMENT_CHARGE
    transaction whose amount equals ``cost``.
    """

    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    brand_id = Column(BigInteger, nullable=False, index=True)
    recipient_id = Column(BigInteger, nullable=False)

    box_count = Column(Integer, nullable=False)
    # {"length": cm, "breadth": cm, "height": cm}
    dimensions = Column(JSON, nullable=False)
    # Tagged part lines, see domain.schemas.DeclaredPart
    declared_parts = Column(JSON, nullable=False)
    priority = Column(String(10), nullable=False, default="MEDIUM")
    notes = Column(Text, nullable=True)

    cost = Column(BigInteger, nullable=True)  # minor units, set when priced
    status = Column(SQLEnum(ShipmentStatus), nullable=False, default=ShipmentStatus.DRAFT, index=True)
    # use_alter: wallet_transactions.shipment_id points back here
    wallet_transaction_id = Column(
        Integer,
        ForeignKey("wallet_transactions.id", use_alter=True, name="fk_shipments_wallet_transaction_id"),
        nullable=True,
    )
    tracking_number = Column(String(64), nullable=True)

    idempotency_key = Column(String(128), nullable=True)
    failure_reason = Column(Text, nullable=True)

    # Carrier dispatch bookkeeping for the reconciliation sweep
    carrier_attempts = Column(Integer, nullable=False, default=0)
    next_carrier_attempt_at = Column(DateTime, nullable=True)
    carrier_last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, index=True)

    events = relationship(
        "ShipmentStatusEvent",
        back_populates="shipment",
        order_by="ShipmentStatusEvent.id",
        lazy="raise",
    )

    __table_args__ = (
        UniqueConstraint("brand_id", "idempotency_key", name="uq_shipment_brand_idempotency_key"),
        Index("ix_shipments_status_updated", "status", "updated_at"),
    )


class ShipmentStatusEvent(Base):
    """Append-only record of every status change"""

    __tablename__ = "shipment_status_events"

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, index=True)
    from_status = Column(SQLEnum(ShipmentStatus), nullable=True)
    to_status = Column(SQLEnum(ShipmentStatus), nullable=False)
    note = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    shipment = relationship("Shipment", back_populates="events", lazy="raise")
