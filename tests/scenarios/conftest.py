"""
Fixtures and helpers for end-to-end booking scenarios.

Provides:
- an orchestrator wired to a scripted carrier
- a sweep runner with immediate retries
- DB assertions (shipment status, wallet balance, ledger rows)
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.config import settings
from booking_engine.db.models.shipment import Shipment
from booking_engine.db.models.wallet import Wallet
from booking_engine.db.models.wallet_transaction import TransactionCategory, WalletTransaction
from booking_engine.domain.services.booking_orchestrator import BookingOrchestrator
from booking_engine.domain.services.reconciliation_service import ReconciliationService
from booking_engine.domain.shipment_states import CHARGED_STATUSES, ShipmentStatus


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def scripted_orchestrator(db_session, dispatched):
    """Build an orchestrator whose carrier plays back the given outcomes"""
    from tests.support import StubCarrierClient

    def _build(*outcomes) -> tuple[BookingOrchestrator, StubCarrierClient]:
        carrier = StubCarrierClient(*outcomes)
        return BookingOrchestrator(db_session, carrier_client=carrier, dispatcher=dispatched.append), carrier

    return _build


@pytest.fixture
def run_sweep(db_session, monkeypatch):
    """One reconciliation pass with retries due immediately"""
    monkeypatch.setattr(settings, "CARRIER_RETRY_BASE_SECONDS", 0)

    async def _run(orchestrator: BookingOrchestrator, max_attempts: int = 3):
        return await ReconciliationService(
            db_session, orchestrator=orchestrator, max_attempts=max_attempts,
        ).run_sweep()

    return _run


# ============================================================================
# DB assertions
# ============================================================================

async def assert_shipment_status(
    db: AsyncSession,
    shipment_id: int,
    expected: ShipmentStatus,
) -> Shipment:
    """Reload the shipment and check its status"""
    result = await db.execute(
        select(Shipment).where(Shipment.id == shipment_id).execution_options(populate_existing=True)
    )
    shipment = result.scalar_one()
    assert shipment.status == expected, (
        f"shipment {shipment_id}: expected {expected.value}, got {shipment.status.value}"
    )
    return shipment


async def assert_wallet_balance(db: AsyncSession, brand_id: int, expected: int) -> None:
    result = await db.execute(select(Wallet.balance).where(Wallet.brand_id == brand_id))
    balance = result.scalar_one()
    assert balance == expected, f"brand {brand_id}: expected balance {expected}, got {balance}"


async def assert_ledger_count(
    db: AsyncSession,
    shipment_id: int,
    category: TransactionCategory,
    expected: int,
) -> None:
    result = await db.execute(
        select(func.count(WalletTransaction.id)).where(
            WalletTransaction.shipment_id == shipment_id,
            WalletTransaction.category == category,
        )
    )
    count = result.scalar_one()
    assert count == expected, (
        f"shipment {shipment_id}: expected {expected} {category.value} rows, got {count}"
    )


async def assert_charges_match_shipments(db: AsyncSession) -> None:
    """Every charged shipment has exactly one SHIPMENT_CHARGE of its cost, and no other has any"""
    shipments = (await db.execute(
        select(Shipment).execution_options(populate_existing=True)
    )).scalars().all()
    for shipment in shipments:
        charges = (await db.execute(
            select(WalletTransaction).where(
                WalletTransaction.shipment_id == shipment.id,
                WalletTransaction.category == TransactionCategory.SHIPMENT_CHARGE,
            )
        )).scalars().all()
        if shipment.status in CHARGED_STATUSES:
            assert shipment.wallet_transaction_id is not None
        if shipment.wallet_transaction_id is not None:
            assert len(charges) == 1, f"shipment {shipment.id} has {len(charges)} charges"
            assert charges[0].amount == shipment.cost
            assert charges[0].id == shipment.wallet_transaction_id
        else:
            assert charges == [], f"shipment {shipment.id} ({shipment.status.value}) was charged"
