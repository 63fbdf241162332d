"""
Tests for Celery Workers - booking_engine/workers/tasks.py

Covers:
- carrier dispatch after the debit commits (success + recorded failure)
- the reconciliation sweep single-flight lock
- the nightly wallet ledger audit
- beat schedule wiring
"""
from contextlib import contextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import update

from booking_engine.db.models.wallet import Wallet
from booking_engine.domain.services.reconciliation_service import SWEEP_LOCK_KEY
from booking_engine.domain.shipment_states import ShipmentStatus

from tests.support import BRAND_ID, shipment_request


@contextmanager
def _inline_task(db_session):
    """
    Run a Celery task body on the test loop.

    run_async hands the coroutine back instead of spinning a new event loop,
    and get_task_session yields the test session.
    """
    session_cm = MagicMock()
    session_cm.__aenter__ = AsyncMock(return_value=db_session)
    session_cm.__aexit__ = AsyncMock(return_value=None)

    with patch("booking_engine.workers.tasks.run_async", side_effect=lambda coro: coro), \
         patch("booking_engine.workers.tasks.get_task_session", return_value=session_cm):
        yield


# ============================================================================
# dispatch_carrier_request
# ============================================================================


class TestDispatchCarrierRequest:

    @pytest.mark.integration
    async def test_dispatch_confirms_shipment(self, db_session, bookable_brand, orchestrator, dispatched):
        from booking_engine.workers.tasks import dispatch_carrier_request

        shipment = await orchestrator.create_shipment(shipment_request())
        assert dispatched == [shipment.id]

        with _inline_task(db_session), \
             patch("booking_engine.workers.tasks.BookingOrchestrator", return_value=orchestrator):
            result = await dispatch_carrier_request(shipment.id)

        assert result == {
            "shipment_id": shipment.id,
            "status": ShipmentStatus.CONFIRMED.value,
            "tracking_number": "AWB-0001",
        }

    @pytest.mark.integration
    async def test_dispatch_unknown_shipment_returns_error(self, db_session, orchestrator):
        from booking_engine.workers.tasks import dispatch_carrier_request

        with _inline_task(db_session), \
             patch("booking_engine.workers.tasks.BookingOrchestrator", return_value=orchestrator):
            result = await dispatch_carrier_request(424242)

        assert result["shipment_id"] == 424242
        assert "error" in result


# ============================================================================
# reconcile_shipments
# ============================================================================


class TestReconcileShipments:

    @pytest.mark.unit
    async def test_skips_when_lock_held(self, db_session, fake_redis):
        from booking_engine.workers.tasks import reconcile_shipments

        await fake_redis.set(SWEEP_LOCK_KEY, "1")

        with _inline_task(db_session), \
             patch("booking_engine.workers.tasks.ReconciliationService") as service_cls:
            result = await reconcile_shipments()

        assert result == {"skipped": True}
        service_cls.assert_not_called()

    @pytest.mark.integration
    async def test_runs_sweep_and_releases_lock(self, db_session, fake_redis):
        from booking_engine.workers.tasks import reconcile_shipments

        with _inline_task(db_session):
            result = await reconcile_shipments()

        assert result == {"timed_out": 0, "retried": 0, "confirmed": 0, "refunded": 0, "errors": 0}
        assert await fake_redis.get(SWEEP_LOCK_KEY) is None

    @pytest.mark.unit
    async def test_late_sweep_keeps_successor_lock(self, db_session, fake_redis):
        from booking_engine.workers.tasks import reconcile_shipments

        async def overrun():
            # the lock expired mid-sweep and the next beat took it
            await fake_redis.delete(SWEEP_LOCK_KEY)
            await fake_redis.set(SWEEP_LOCK_KEY, "next-sweep-token")
            return MagicMock(as_dict=MagicMock(return_value={"retried": 100}))

        service = MagicMock()
        service.run_sweep = AsyncMock(side_effect=overrun)

        with _inline_task(db_session), \
             patch("booking_engine.workers.tasks.ReconciliationService", return_value=service):
            result = await reconcile_shipments()

        assert result == {"retried": 100}
        assert await fake_redis.get(SWEEP_LOCK_KEY) == "next-sweep-token"

    @pytest.mark.unit
    async def test_lock_released_when_sweep_raises(self, db_session, fake_redis):
        from booking_engine.workers.tasks import reconcile_shipments

        service = MagicMock()
        service.run_sweep = AsyncMock(side_effect=RuntimeError("db gone"))

        with _inline_task(db_session), \
             patch("booking_engine.workers.tasks.ReconciliationService", return_value=service):
            with pytest.raises(RuntimeError):
                await reconcile_shipments()

        assert await fake_redis.get(SWEEP_LOCK_KEY) is None


class TestSweepLock:

    @pytest.mark.unit
    async def test_second_acquire_fails(self, fake_redis):
        from booking_engine.core.redis_client import acquire_lock

        token = await acquire_lock(fake_redis, "lock:a", 60)

        assert token
        assert await acquire_lock(fake_redis, "lock:a", 60) is None
        assert fake_redis._ttls["lock:a"] == 60

    @pytest.mark.unit
    async def test_release_requires_matching_token(self, fake_redis):
        from booking_engine.core.redis_client import acquire_lock, release_lock

        token = await acquire_lock(fake_redis, "lock:a", 60)

        assert await release_lock(fake_redis, "lock:a", "someone-else") is False
        assert await fake_redis.get("lock:a") == token
        assert await release_lock(fake_redis, "lock:a", token) is True
        assert await fake_redis.get("lock:a") is None


# ============================================================================
# audit_wallet_ledgers
# ============================================================================


class TestAuditWalletLedgers:

    @pytest.mark.integration
    async def test_consistent_wallets_pass(self, db_session, bookable_brand):
        from booking_engine.workers.tasks import audit_wallet_ledgers

        with _inline_task(db_session):
            result = await audit_wallet_ledgers()

        assert result == {"checked": 1, "frozen": []}

    @pytest.mark.integration
    async def test_drifting_wallet_is_frozen(self, db_session, bookable_brand):
        from booking_engine.workers.tasks import audit_wallet_ledgers

        wallet_id = bookable_brand.id
        await db_session.execute(update(Wallet).where(Wallet.brand_id == BRAND_ID).values(balance=4321))
        await db_session.commit()

        with _inline_task(db_session):
            result = await audit_wallet_ledgers()

        assert result["frozen"] == [wallet_id]
        wallet = await db_session.get(Wallet, wallet_id, populate_existing=True)
        assert wallet.is_frozen is True


# ============================================================================
# Beat schedule
# ============================================================================


class TestBeatSchedule:

    @pytest.mark.unit
    def test_periodic_tasks_registered(self):
        from booking_engine.workers.celery_app import celery_app

        tasks = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
        assert tasks == {
            "booking_engine.workers.tasks.reconcile_shipments",
            "booking_engine.workers.tasks.audit_wallet_ledgers",
        }
