"""
State Definitions for the Shipment Booking Flow
"""
from enum import Enum

from booking_engine.core.exceptions import InvalidStateTransitionError


class ShipmentStatus(str, Enum):
    """Lifecycle of a shipment from booking request to carrier confirmation"""

    # Happy path
    DRAFT = "draft"
    VALIDATED = "validated"
    PRICED = "priced"
    DEBITED = "debited"
    CARRIER_PENDING = "carrier_pending"
    CONFIRMED = "confirmed"

    # Failure exits
    REJECTED = "rejected"  # authorization gate
    PRICING_FAILED = "pricing_failed"
    DEBIT_FAILED = "debit_failed"
    CARRIER_FAILED = "carrier_failed"  # not terminal, owned by the sweep

    # Compensation
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


SHIPMENT_TRANSITIONS = {
    ShipmentStatus.DRAFT: [ShipmentStatus.VALIDATED, ShipmentStatus.CANCELLED],
    ShipmentStatus.VALIDATED: [
        ShipmentStatus.PRICED,
        ShipmentStatus.REJECTED,
        ShipmentStatus.PRICING_FAILED,
        ShipmentStatus.CANCELLED,
    ],
    ShipmentStatus.PRICED: [ShipmentStatus.DEBITED, ShipmentStatus.DEBIT_FAILED],
    ShipmentStatus.DEBITED: [ShipmentStatus.CARRIER_PENDING, ShipmentStatus.CANCELLED],
    ShipmentStatus.CARRIER_PENDING: [
        ShipmentStatus.CONFIRMED,
        ShipmentStatus.CARRIER_FAILED,
        ShipmentStatus.CANCELLED,
    ],
    ShipmentStatus.CARRIER_FAILED: [
        ShipmentStatus.CARRIER_PENDING,
        ShipmentStatus.REFUNDED,
        ShipmentStatus.CANCELLED,
    ],
    ShipmentStatus.CONFIRMED: [],
    ShipmentStatus.REJECTED: [],
    ShipmentStatus.PRICING_FAILED: [],
    ShipmentStatus.DEBIT_FAILED: [],
    ShipmentStatus.REFUNDED: [],
    ShipmentStatus.CANCELLED: [],
}

# Statuses whose shipment holds a SHIPMENT_CHARGE debit that has not been refunded
CHARGED_STATUSES = frozenset({
    ShipmentStatus.DEBITED,
    ShipmentStatus.CARRIER_PENDING,
    ShipmentStatus.CARRIER_FAILED,
    ShipmentStatus.CONFIRMED,
})

# Cancelling from these returns the charge to the wallet
REFUNDABLE_ON_CANCEL = frozenset({
    ShipmentStatus.DEBITED,
    ShipmentStatus.CARRIER_PENDING,
    ShipmentStatus.CARRIER_FAILED,
})

TERMINAL_STATUSES = frozenset(
    status for status, targets in SHIPMENT_TRANSITIONS.items() if not targets
)


def can_transition(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    return target in SHIPMENT_TRANSITIONS.get(current, [])


def ensure_transition(
    current: ShipmentStatus,
    target: ShipmentStatus,
    shipment_id: int | None = None,
) -> None:
    """Raise InvalidStateTransitionError unless current -> target is allowed"""
    if not can_transition(current, target):
        raise InvalidStateTransitionError(
            current.value, target.value, entity="shipment", entity_id=shipment_id
        )
