"""
Wallet Model - Brand Prepaid Balance
"""
from sqlalchemy import Column, Integer, BigInteger, Boolean, DateTime, CheckConstraint

from booking_engine.db.compat import utcnow
from booking_engine.db.database import Base


class Wallet(Base):
    """Current balance per brand, in minor currency units.

    ``balance`` is only ever changed by the wallet ledger while it appends a
    transaction, so it always equals the replayed transaction log.
    """

    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    brand_id = Column(BigInteger, unique=True, nullable=False, index=True)

    balance = Column(BigInteger, nullable=False, default=0)
    # Net shipment spend: charges minus refunds
    total_spent = Column(BigInteger, nullable=False, default=0)
    last_recharge_at = Column(DateTime, nullable=True)

    # Wallets are deactivated, never deleted
    is_active = Column(Boolean, nullable=False, default=True)
    # Set by the ledger audit when replay does not match the balance
    is_frozen = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )
