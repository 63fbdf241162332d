"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- FakeRedis and a carrier stub
- Test data factories (wallets, pricing, recipients, part approvals)
"""
# Settings are read at import time, so the environment is prepared first
import os
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("CARRIER_CALLBACK_SECRET", "test-carrier-secret")
os.environ.setdefault("CARRIER_API_URL", "http://carrier.test")

from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

import booking_engine.db.models  # noqa: F401
from booking_engine.db.database import Base, get_db
from booking_engine.db.models.authorized_recipient import AuthorizedRecipient
from booking_engine.db.models.courier_pricing import CourierPricing
from booking_engine.db.models.part_approval import PartApproval, PartApprovalStatus
from booking_engine.domain.services.booking_orchestrator import BookingOrchestrator
from booking_engine.domain.services.wallet_service import WalletService
from booking_engine.api.routes.shipments import get_carrier_dispatcher
from booking_engine.main import app

from tests.support import BRAND_ID, PART_ID, RECIPIENT_ID, StubCarrierClient


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def dispatched() -> list[int]:
    """Shipment ids handed to the carrier dispatcher instead of Celery"""
    return []


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, dispatched: list[int]):
    """Create test client with database and dispatcher overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_carrier_dispatcher] = lambda: dispatched.append

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Carrier stub
# ============================================================================

@pytest.fixture
def carrier() -> StubCarrierClient:
    return StubCarrierClient("AWB-0001")


@pytest.fixture
def orchestrator(db_session, carrier, dispatched) -> BookingOrchestrator:
    return BookingOrchestrator(db_session, carrier_client=carrier, dispatcher=dispatched.append)


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def wallet_factory(db_session: AsyncSession):
    """Open a wallet and fund it through the ledger so replays stay consistent"""
    async def _create_wallet(brand_id: int = BRAND_ID, balance: int = 0):
        service = WalletService(db_session)
        wallet = await service.open_wallet(brand_id)
        if balance:
            await service.recharge_wallet(brand_id, balance, description="test funding")
        await db_session.refresh(wallet)
        return wallet

    return _create_wallet


@pytest.fixture
def pricing_factory(db_session: AsyncSession):
    async def _create_pricing(
        brand_id: int = BRAND_ID,
        rate_per_box: Decimal | int = 50,
        is_active: bool = True,
    ) -> CourierPricing:
        pricing = CourierPricing(brand_id=brand_id, rate_per_box=Decimal(rate_per_box), is_active=is_active)
        db_session.add(pricing)
        await db_session.commit()
        await db_session.refresh(pricing)
        return pricing

    return _create_pricing


@pytest.fixture
def recipient_factory(db_session: AsyncSession):
    async def _create_recipient(
        brand_id: int = BRAND_ID,
        recipient_id: int = RECIPIENT_ID,
        recipient_name: str = "Sharma Auto Spares",
        address: str | None = "12 MG Road, Pune",
        is_active: bool = True,
    ) -> AuthorizedRecipient:
        recipient = AuthorizedRecipient(
            brand_id=brand_id,
            recipient_id=recipient_id,
            recipient_name=recipient_name,
            address=address,
            is_active=is_active,
        )
        db_session.add(recipient)
        await db_session.commit()
        await db_session.refresh(recipient)
        return recipient

    return _create_recipient


@pytest.fixture
def approval_factory(db_session: AsyncSession):
    async def _create_approval(
        brand_id: int = BRAND_ID,
        part_id: str = PART_ID,
        part_name: str = "Brake pad set",
        status: PartApprovalStatus = PartApprovalStatus.APPROVED,
        rejection_reason: str | None = None,
    ) -> PartApproval:
        approval = PartApproval(
            brand_id=brand_id,
            part_id=part_id,
            part_name=part_name,
            category="MECHANICAL",
            status=status,
            rejection_reason=rejection_reason,
        )
        db_session.add(approval)
        await db_session.commit()
        await db_session.refresh(approval)
        return approval

    return _create_approval


@pytest.fixture
async def bookable_brand(wallet_factory, pricing_factory, recipient_factory, approval_factory):
    """Brand 1: balance 1000, rate 50 per box, one recipient, one approved part"""
    wallet = await wallet_factory(BRAND_ID, balance=1000)
    await pricing_factory(BRAND_ID, rate_per_box=50)
    await recipient_factory(BRAND_ID, RECIPIENT_ID)
    await approval_factory(BRAND_ID, PART_ID)
    return wallet


# ============================================================================
# Redis
# ============================================================================

class FakeRedis:
    """In-memory Redis replacement with the subset of commands the engine uses"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        """SET with NX (only if absent) and EX (expiry in seconds)"""
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def eval(self, script: str, numkeys: int, *keys_and_args: str) -> int:
        """Only the compare-and-delete script release_lock sends"""
        key, token = keys_and_args[0], keys_and_args[numkeys]
        if self._store.get(key) != token:
            return 0
        await self.delete(key)
        return 1

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis for every test"""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("booking_engine.core.redis_client.get_redis", _get_fake_redis), \
         patch("booking_engine.workers.tasks.get_redis", _get_fake_redis), \
         patch("booking_engine.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake
