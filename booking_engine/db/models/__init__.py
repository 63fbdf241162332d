"""
Database Models
"""
from booking_engine.db.models.wallet import Wallet
from booking_engine.db.models.wallet_transaction import (
    WalletTransaction,
    TransactionType,
    TransactionCategory,
)
from booking_engine.db.models.courier_pricing import CourierPricing
from booking_engine.db.models.authorized_recipient import AuthorizedRecipient
from booking_engine.db.models.part_approval import PartApproval, PartApprovalStatus
from booking_engine.db.models.shipment import Shipment, ShipmentStatusEvent

__all__ = [
    "Wallet",
    "WalletTransaction",
    "TransactionType",
    "TransactionCategory",
    "CourierPricing",
    "AuthorizedRecipient",
    "PartApproval",
    "PartApprovalStatus",
    "Shipment",
    "ShipmentStatusEvent",
]
