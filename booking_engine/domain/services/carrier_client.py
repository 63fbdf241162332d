"""
Carrier Client - AWB (air waybill) requests to the courier partner

One HTTP attempt per call. Retries and backoff belong to the reconciliation
sweep, which sees every failure recorded on the shipment row.
"""
from typing import Any

import httpx

from booking_engine.core.config import settings
from booking_engine.core.exceptions import CarrierError, CarrierTimeoutError, InvalidRequestError
from booking_engine.core.logging import get_logger
from booking_engine.db.models.authorized_recipient import AuthorizedRecipient
from booking_engine.db.models.shipment import Shipment

logger = get_logger(__name__)

_REFERENCE_PREFIX = "SHP-"


def shipment_reference(shipment_id: int) -> str:
    """Stable reference the carrier uses to de-duplicate repeated AWB requests"""
    return f"{_REFERENCE_PREFIX}{shipment_id:08d}"


def parse_shipment_reference(reference: str) -> int:
    """Inverse of shipment_reference, for carrier callbacks"""
    digits = reference[len(_REFERENCE_PREFIX):] if reference.startswith(_REFERENCE_PREFIX) else ""
    if not digits.isdigit():
        raise InvalidRequestError(f"Unknown shipment reference {reference!r}", field="reference")
    return int(digits)


class CarrierClient:
    """Thin async client for ``POST {CARRIER_API_URL}/awb``"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.CARRIER_API_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.CARRIER_API_KEY
        self._timeout = timeout if timeout is not None else settings.CARRIER_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    def _build_payload(self, shipment: Shipment, recipient: AuthorizedRecipient | None) -> dict[str, Any]:
        return {
            "reference": shipment_reference(shipment.id),
            "brand_id": shipment.brand_id,
            "consignee": {
                "recipient_id": shipment.recipient_id,
                "name": recipient.recipient_name if recipient else None,
                "address": recipient.address if recipient else None,
            },
            "box_count": shipment.box_count,
            "dimensions_cm": shipment.dimensions,
            "priority": shipment.priority,
            "declared_parts": shipment.declared_parts,
        }

    async def request_awb(self, shipment: Shipment, recipient: AuthorizedRecipient | None = None) -> str:
        """
        Ask the carrier to generate an AWB for the shipment.

        Returns:
            The tracking (AWB) number.

        Raises:
            CarrierTimeoutError: no answer within the configured timeout
            CarrierError: transport failure, non-2xx status or malformed body
        """
        reference = shipment_reference(shipment.id)
        headers = {"Idempotency-Key": reference}
        if self._api_key:
            headers["X-API-Key"] = self._api_key

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/awb",
                    json=self._build_payload(shipment, recipient),
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            logger.warning(
                "Carrier AWB request timed out",
                extra_data={"shipment_id": shipment.id, "timeout_seconds": self._timeout}
            )
            raise CarrierTimeoutError(self._timeout) from e
        except httpx.RequestError as e:
            logger.warning(
                "Carrier AWB request failed",
                extra_data={"shipment_id": shipment.id, "error": str(e)}
            )
            raise CarrierError(
                f"request to /awb failed: {type(e).__name__}",
                details={"operation": "awb", "error": str(e)},
            ) from e

        if response.status_code not in (200, 201):
            logger.warning(
                "Carrier rejected AWB request",
                extra_data={"shipment_id": shipment.id, "status_code": response.status_code}
            )
            raise CarrierError.from_response("awb", response)

        try:
            body = response.json()
        except ValueError as e:
            raise CarrierError.from_response("awb", response, message="awb returned a non-JSON body") from e

        tracking_number = None
        if isinstance(body, dict):
            tracking_number = body.get("awb_number") or body.get("tracking_number")
        if not tracking_number:
            raise CarrierError.from_response("awb", response, message="awb response has no awb_number")

        logger.info(
            "Carrier AWB generated",
            extra_data={"shipment_id": shipment.id, "tracking_number": tracking_number}
        )
        return str(tracking_number)
