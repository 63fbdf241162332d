"""
Reconciliation Service - sweep for shipments the carrier has not confirmed

Each pass:
1. CARRIER_PENDING past the pending timeout -> CARRIER_FAILED
2. CARRIER_FAILED, due, attempts left -> retry the carrier
3. CARRIER_FAILED with attempts exhausted -> refund the charge, REFUNDED

Shipments are handled one at a time, each in its own unit of work, so one
bad shipment never blocks the rest of the batch.
"""
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.config import settings
from booking_engine.core.exceptions import AppException
from booking_engine.core.logging import get_logger, log_async_operation
from booking_engine.db.compat import utcnow
from booking_engine.db.models.shipment import Shipment
from booking_engine.domain.services.booking_orchestrator import BookingOrchestrator
from booking_engine.domain.shipment_states import ShipmentStatus

logger = get_logger(__name__)

SWEEP_LOCK_KEY = "booking:reconciliation:lock"


@dataclass
class SweepReport:
    """Counters for one sweep pass"""
    timed_out: int = 0
    retried: int = 0
    confirmed: int = 0
    refunded: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "timed_out": self.timed_out,
            "retried": self.retried,
            "confirmed": self.confirmed,
            "refunded": self.refunded,
            "errors": len(self.errors),
        }


class ReconciliationService:
    """Drives stuck carrier requests to CONFIRMED or REFUNDED"""

    def __init__(
        self,
        db: AsyncSession,
        orchestrator: BookingOrchestrator | None = None,
        max_attempts: int | None = None,
        pending_timeout_seconds: int | None = None,
        batch_size: int | None = None,
    ):
        self.db = db
        self.orchestrator = orchestrator or BookingOrchestrator(db)
        self.max_attempts = max_attempts or settings.CARRIER_MAX_ATTEMPTS
        self.pending_timeout_seconds = (
            pending_timeout_seconds
            if pending_timeout_seconds is not None
            else settings.CARRIER_PENDING_TIMEOUT_SECONDS
        )
        self.batch_size = batch_size or settings.RECONCILIATION_BATCH_SIZE

    async def _ids(self, query) -> list[int]:
        result = await self.db.execute(query.order_by(Shipment.id).limit(self.batch_size))
        ids = list(result.scalars().all())
        # Close the read transaction before per-shipment units of work
        await self.db.commit()
        return ids

    async def expire_pending(self, report: SweepReport) -> None:
        cutoff = utcnow() - timedelta(seconds=self.pending_timeout_seconds)
        ids = await self._ids(
            select(Shipment.id).where(
                Shipment.status == ShipmentStatus.CARRIER_PENDING,
                Shipment.updated_at < cutoff,
            )
        )
        for shipment_id in ids:
            try:
                await self.orchestrator.handle_carrier_failure(
                    shipment_id,
                    f"carrier timeout: no response within {self.pending_timeout_seconds}s",
                )
                report.timed_out += 1
            except Exception as e:
                await self._record_error(report, shipment_id, "timeout", e)

    async def process_failed(self, report: SweepReport) -> None:
        now = utcnow()
        ids = await self._ids(
            select(Shipment.id).where(
                Shipment.status == ShipmentStatus.CARRIER_FAILED,
                or_(
                    Shipment.carrier_attempts >= self.max_attempts,
                    Shipment.next_carrier_attempt_at.is_(None),
                    Shipment.next_carrier_attempt_at <= now,
                ),
            )
        )
        for shipment_id in ids:
            try:
                await self._process_failed_shipment(shipment_id, report)
            except Exception as e:
                await self._record_error(report, shipment_id, "retry", e)

    async def _process_failed_shipment(self, shipment_id: int, report: SweepReport) -> None:
        shipment = await self.orchestrator.get_shipment(shipment_id)
        await self.db.commit()

        if shipment.carrier_attempts < self.max_attempts:
            shipment = await self.orchestrator.retry_carrier(shipment_id)
            report.retried += 1
            if shipment.status == ShipmentStatus.CONFIRMED:
                report.confirmed += 1
                return

        if shipment.status == ShipmentStatus.CARRIER_FAILED and shipment.carrier_attempts >= self.max_attempts:
            await self.orchestrator.refund_shipment(
                shipment_id,
                f"carrier failed after {shipment.carrier_attempts} attempts: {shipment.carrier_last_error}",
            )
            report.refunded += 1

    async def _record_error(self, report: SweepReport, shipment_id: int, stage: str, error: Exception) -> None:
        await self.db.rollback()
        message = error.message if isinstance(error, AppException) else str(error)
        report.errors.append({"shipment_id": shipment_id, "stage": stage, "error": message})
        logger.error(
            "Reconciliation failed for shipment",
            extra_data={
                "shipment_id": shipment_id,
                "stage": stage,
                "error_type": type(error).__name__,
                "error": message,
            },
            exc_info=not isinstance(error, AppException)
        )

    @log_async_operation("reconciliation_sweep")
    async def run_sweep(self) -> SweepReport:
        """One full pass. Callers hold the single-flight lock."""
        report = SweepReport()
        await self.expire_pending(report)
        await self.process_failed(report)

        logger.info("Reconciliation sweep finished", extra_data=report.as_dict())
        return report
