"""
Shipment API Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List

from fastapi import APIRouter, Depends, Header, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.db.database import get_db
from booking_engine.domain.schemas import ShipmentRequest
from booking_engine.domain.services.booking_orchestrator import (
    BookingOrchestrator,
    enqueue_carrier_request,
)
from booking_engine.domain.shipment_states import ShipmentStatus

router = APIRouter()


def get_carrier_dispatcher() -> Callable[[int], None]:
    """How a booked shipment reaches the carrier worker (overridable in tests)"""
    return enqueue_carrier_request


class ShipmentResponse(BaseModel):
    id: int
    brand_id: int
    recipient_id: int
    box_count: int
    dimensions: dict[str, Any]
    declared_parts: list[dict[str, Any]]
    priority: str
    notes: str | None
    cost: int | None
    status: ShipmentStatus
    wallet_transaction_id: int | None
    tracking_number: str | None
    failure_reason: str | None
    carrier_attempts: int
    created_at: datetime | None
    updated_at: datetime | None

    class Config:
        from_attributes = True


class StatusEventResponse(BaseModel):
    id: int
    from_status: ShipmentStatus | None
    to_status: ShipmentStatus
    note: str | None
    created_at: datetime | None

    class Config:
        from_attributes = True


class QuoteResponse(BaseModel):
    brand_id: int
    box_count: int
    priority: str
    rate_per_box: Decimal
    rate_source: str
    base_cost: Decimal
    priority_multiplier: Decimal
    total: int


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


@router.post(
    "",
    response_model=ShipmentResponse,
    status_code=201,
    summary="Book a shipment",
    description=(
        "Validates the recipient and every declared part, prices the shipment and "
        "debits the brand wallet atomically. Send Idempotency-Key to make retries safe: "
        "a replayed key returns the original shipment with 200."
    ),
)
async def create_shipment(
    request: ShipmentRequest,
    response: Response,
    idempotency_key: str | None = Header(None, max_length=128),
    db: AsyncSession = Depends(get_db),
    dispatcher: Callable[[int], None] = Depends(get_carrier_dispatcher),
):
    orchestrator = BookingOrchestrator(db, dispatcher=dispatcher)
    shipment, created = await orchestrator.book_shipment(request, idempotency_key=idempotency_key)
    if not created:
        response.status_code = 200
    return shipment


@router.post(
    "/quote",
    response_model=QuoteResponse,
    summary="Estimate the cost of a shipment",
    description="Runs validation, authorization and pricing without booking or charging.",
)
async def quote_shipment(
    request: ShipmentRequest,
    db: AsyncSession = Depends(get_db),
):
    orchestrator = BookingOrchestrator(db)
    return await orchestrator.quote_shipment(request)


@router.get("/{shipment_id}", response_model=ShipmentResponse, summary="Get a shipment")
async def get_shipment(
    shipment_id: int,
    db: AsyncSession = Depends(get_db),
):
    return await BookingOrchestrator(db).get_shipment(shipment_id)


@router.get(
    "/{shipment_id}/events",
    response_model=List[StatusEventResponse],
    summary="Status history of a shipment",
)
async def get_shipment_events(
    shipment_id: int,
    db: AsyncSession = Depends(get_db),
):
    return await BookingOrchestrator(db).list_status_events(shipment_id)


@router.post(
    "/{shipment_id}/cancel",
    response_model=ShipmentResponse,
    summary="Cancel a shipment",
    description="Allowed until the carrier confirms. A debited shipment is refunded in full.",
)
async def cancel_shipment(
    shipment_id: int,
    body: CancelRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    reason = body.reason if body else None
    return await BookingOrchestrator(db).cancel_shipment(shipment_id, reason)
