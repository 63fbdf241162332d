"""
Carrier Callback Route

Asynchronous AWB outcomes pushed by the courier partner.
"""
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.dependencies.carrier_auth import verify_carrier_callback_token
from booking_engine.core.logging import get_logger
from booking_engine.db.database import get_db
from booking_engine.domain.services.booking_orchestrator import BookingOrchestrator
from booking_engine.domain.services.carrier_client import parse_shipment_reference

logger = get_logger(__name__)

router = APIRouter()


class CarrierCallback(BaseModel):
    reference: str = Field(min_length=1, max_length=32)
    status: Literal["CONFIRMED", "FAILED"]
    awb_number: str | None = Field(default=None, max_length=64)
    error: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def require_awb_on_confirmation(self) -> "CarrierCallback":
        if self.status == "CONFIRMED" and not self.awb_number:
            raise ValueError("awb_number is required when status is CONFIRMED")
        return self


@router.post(
    "/callback",
    summary="Carrier status callback",
    description="Confirms a shipment with its AWB number or records a carrier failure.",
)
async def carrier_callback(
    payload: CarrierCallback,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_carrier_callback_token),
):
    shipment_id = parse_shipment_reference(payload.reference)
    orchestrator = BookingOrchestrator(db)

    logger.info(
        "Carrier callback received",
        extra_data={"shipment_id": shipment_id, "status": payload.status}
    )
    if payload.status == "CONFIRMED":
        shipment = await orchestrator.handle_carrier_success(shipment_id, payload.awb_number)
    else:
        shipment = await orchestrator.handle_carrier_failure(
            shipment_id, payload.error or "carrier reported failure"
        )

    return {"shipment_id": shipment.id, "status": shipment.status.value}
