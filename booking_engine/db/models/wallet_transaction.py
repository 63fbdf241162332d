"""
Wallet Transaction Model - Immutable Ledger
"""
import enum
from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, ForeignKey,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint,
)

from booking_engine.db.compat import utcnow
from booking_engine.db.database import Base


class TransactionType(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionCategory(str, enum.Enum):
    RECHARGE = "recharge"
    SHIPMENT_CHARGE = "shipment_charge"
    SHIPMENT_REFUND = "shipment_refund"
    ADJUSTMENT = "adjustment"


class WalletTransaction(Base):
    """Append-only transaction log. Rows are never updated or deleted."""

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)

    type = Column(SQLEnum(TransactionType), nullable=False)
    category = Column(SQLEnum(TransactionCategory), nullable=False)
    amount = Column(BigInteger, nullable=False)  # always positive, direction is in ``type``
    balance_after = Column(BigInteger, nullable=False)

    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=True, index=True)
    # Payment gateway order / receipt id for recharges
    external_reference = Column(String(100), nullable=True)
    description = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    __table_args__ = (
        # One charge and at most one refund per shipment
        UniqueConstraint("wallet_id", "shipment_id", "category", name="uq_wallet_shipment_category"),
        UniqueConstraint("wallet_id", "external_reference", name="uq_wallet_external_reference"),
        CheckConstraint("amount > 0", name="ck_wallet_transaction_amount_positive"),
    )

    @property
    def signed_amount(self) -> int:
        return self.amount if self.type == TransactionType.CREDIT else -self.amount
