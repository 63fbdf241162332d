"""
Shared test helpers: request builders and a scripted carrier stub.
"""
import itertools
from typing import Any

from booking_engine.core.exceptions import CarrierError

ADMIN_HEADERS = {"X-Admin-API-Key": "test-admin-key"}
CARRIER_HEADERS = {"X-Carrier-Token": "test-carrier-secret"}

BRAND_ID = 1
RECIPIENT_ID = 501
PART_ID = "BRK-001"

_brand_counter = itertools.count(1000)


def next_brand_id() -> int:
    """Unique brand id for tests that share one database across examples"""
    return next(_brand_counter)


def shipment_request(
    brand_id: int = BRAND_ID,
    recipient_id: int = RECIPIENT_ID,
    box_count: int = 4,
    priority: str = "MEDIUM",
    parts: list[dict[str, Any]] | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    """Raw booking request as the API receives it"""
    data = {
        "brand_id": brand_id,
        "recipient_id": recipient_id,
        "box_count": box_count,
        "dimensions": {"length": 40, "breadth": 30, "height": 20},
        "declared_parts": parts if parts is not None else [
            {"category": "MECHANICAL", "part_id": PART_ID, "quantity": 10, "material": "steel"},
        ],
        "priority": priority,
    }
    data.update(overrides)
    return data


class StubCarrierClient:
    """
    Stands in for CarrierClient. Each call pops the next outcome: a string is
    returned as the AWB number, an exception is raised. When the script runs
    out the last outcome repeats.
    """

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes) or ["AWB-0001"]
        self.calls: list[int] = []

    async def request_awb(self, shipment, recipient=None) -> str:
        self.calls.append(shipment.id)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def carrier_down(message: str = "awb returned status 503") -> CarrierError:
    return CarrierError(message, details={"operation": "awb", "status_code": 503})
