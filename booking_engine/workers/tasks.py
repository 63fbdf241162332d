"""
Celery Tasks for Carrier Dispatch and Reconciliation

The booking orchestrator enqueues dispatch_carrier_request after the debit
commits. Beat runs the reconciliation sweep and the nightly ledger audit.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager

from booking_engine.workers.celery_app import celery_app
from booking_engine.db.database import get_task_session
from booking_engine.domain.services.booking_orchestrator import BookingOrchestrator
from booking_engine.domain.services.reconciliation_service import (
    ReconciliationService,
    SWEEP_LOCK_KEY,
)
from booking_engine.domain.services.wallet_service import WalletService
from booking_engine.core.config import settings
from booking_engine.core.exceptions import AppException, LedgerInvariantViolationError
from booking_engine.core.logging import get_logger, set_correlation_id
from booking_engine.core.redis_client import acquire_lock, get_redis, release_lock

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # The Redis singleton is bound to this loop, drop it before closing
            from booking_engine.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Fresh correlation ID per task
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="booking_engine.workers.tasks.dispatch_carrier_request")
def dispatch_carrier_request(shipment_id: int):
    """
    Request the AWB for a freshly debited shipment.

    Failures are recorded on the shipment, the sweep owns retries, so the
    task itself never retries.
    """

    async def _dispatch():
        async with get_task_session() as db:
            orchestrator = BookingOrchestrator(db)
            try:
                shipment = await orchestrator.dispatch_to_carrier(shipment_id)
            except AppException as e:
                logger.error(
                    "Carrier dispatch could not be recorded",
                    extra_data={"shipment_id": shipment_id, "error_code": e.error_code.value, "error": e.message}
                )
                return {"shipment_id": shipment_id, "error": e.message}
            return {
                "shipment_id": shipment_id,
                "status": shipment.status.value,
                "tracking_number": shipment.tracking_number,
            }

    return run_async(_dispatch())


# Hard limit equals the lock TTL: a killed sweep leaves the rest to the next pass
@celery_app.task(
    name="booking_engine.workers.tasks.reconcile_shipments",
    time_limit=settings.RECONCILIATION_LOCK_SECONDS,
)
def reconcile_shipments():
    """
    Periodic reconciliation sweep.

    Single-flight: a Redis SET NX EX lock makes an overlapping beat skip
    instead of processing the same shipments twice.
    """

    async def _reconcile():
        redis = await get_redis()
        lock_token = await acquire_lock(redis, SWEEP_LOCK_KEY, settings.RECONCILIATION_LOCK_SECONDS)
        if lock_token is None:
            logger.info("Reconciliation sweep already running, skipping")
            return {"skipped": True}

        try:
            async with get_task_session() as db:
                report = await ReconciliationService(db).run_sweep()
                return report.as_dict()
        finally:
            await release_lock(redis, SWEEP_LOCK_KEY, lock_token)

    return run_async(_reconcile())


@celery_app.task(name="booking_engine.workers.tasks.audit_wallet_ledgers")
def audit_wallet_ledgers():
    """Replay every active wallet's ledger. Drifting wallets are frozen."""

    async def _audit():
        async with get_task_session() as db:
            service = WalletService(db)
            wallet_ids = await service.active_wallet_ids()
            frozen = []
            for wallet_id in wallet_ids:
                try:
                    await service.verify_wallet(wallet_id)
                except LedgerInvariantViolationError:
                    # verify_wallet already froze the wallet and logged at CRITICAL
                    frozen.append(wallet_id)

            logger.info(
                "Wallet ledger audit finished",
                extra_data={"checked": len(wallet_ids), "frozen": frozen}
            )
            return {"checked": len(wallet_ids), "frozen": frozen}

    return run_async(_audit())
