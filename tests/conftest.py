"""Test configuration and fixtures.

Each test gets a fresh SQLite database file (or TEST_DATABASE_URL when set),
an in-process fake Redis, and an in-memory payment gateway. No network access.
"""

import uuid
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
import redis.asyncio as aioredis
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings
from app.database import Base, get_db
from app.errors import GatewayError
from app.main import app
from app.models.escrow import EscrowTransaction, TransactionHistoryEntry  # noqa: F401
from app.models.payment_method import PaymentMethod  # noqa: F401
from app.models.user import User
from app.redis import get_redis
from app.services.gateway import (
    GatewayPaymentStatus,
    HeldPayment,
    PaymentMethodDetails,
    PayoutDestinationStatus,
    get_gateway,
)


# ---------------------------------------------------------------------------
# In-memory payment gateway
# ---------------------------------------------------------------------------

class FakeGateway:
    """``PaymentGateway`` that records calls and answers from in-memory state.

    Set ``payment_status`` to control what confirm sees, or ``fail_on`` to a
    method name to make that call raise ``GatewayError``.
    """

    def __init__(self) -> None:
        self.payment_status = GatewayPaymentStatus.SUCCEEDED
        self.destination_status = PayoutDestinationStatus(
            details_submitted=True, charges_enabled=True, payouts_enabled=True,
        )
        self.fail_on: set[str] = set()
        self.held_payments: list[dict] = []
        self.refunds: list[dict] = []
        self.destinations: list[dict] = []
        self.onboarding_links: list[str] = []
        self._counter = 0
        # Responses by idempotency key, replayed like the real provider does
        self._replays: dict[str, object] = {}

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_test_{self._counter:04d}"

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise GatewayError()

    async def create_held_payment(
        self, amount, currency, destination_account, commission, transfer_group, metadata,
        idempotency_key=None,
    ) -> HeldPayment:
        self._maybe_fail("create_held_payment")
        if idempotency_key in self._replays:
            return self._replays[idempotency_key]  # type: ignore[return-value]
        reference = self._next("pi")
        self.held_payments.append({
            "reference": reference,
            "amount": amount,
            "currency": currency,
            "destination_account": destination_account,
            "commission": commission,
            "transfer_group": transfer_group,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })
        held = HeldPayment(payment_reference=reference, client_secret=f"{reference}_secret")
        if idempotency_key is not None:
            self._replays[idempotency_key] = held
        return held

    async def get_payment_status(self, payment_reference: str) -> GatewayPaymentStatus:
        self._maybe_fail("get_payment_status")
        return self.payment_status

    async def create_refund(
        self, payment_reference: str, reason: str, metadata: dict, idempotency_key: str | None = None,
    ) -> str:
        self._maybe_fail("create_refund")
        if idempotency_key in self._replays:
            return self._replays[idempotency_key]  # type: ignore[return-value]
        reference = self._next("re")
        self.refunds.append({
            "reference": reference,
            "payment_reference": payment_reference,
            "reason": reason,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })
        if idempotency_key is not None:
            self._replays[idempotency_key] = reference
        return reference

    async def create_payout_destination(self, owner_id: int, country: str, email: str) -> str:
        self._maybe_fail("create_payout_destination")
        account_id = self._next("acct")
        self.destinations.append({"account_id": account_id, "owner_id": owner_id, "country": country})
        return account_id

    async def create_onboarding_link(self, destination_account_id: str) -> str:
        self._maybe_fail("create_onboarding_link")
        url = f"https://connect.example.com/setup/{destination_account_id}"
        self.onboarding_links.append(url)
        return url

    async def get_payout_destination_status(self, destination_account_id: str) -> PayoutDestinationStatus:
        self._maybe_fail("get_payout_destination_status")
        return self.destination_status

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethodDetails:
        self._maybe_fail("get_payment_method")
        return PaymentMethodDetails(
            payment_method_id=payment_method_id,
            type="card",
            brand="visa",
            last4="4242",
            expiry_month=12,
            expiry_year=2030,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    url = settings.test_database_url or f"sqlite+aiosqlite:///{tmp_path / 'escrow.db'}"
    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis() -> AsyncGenerator[aioredis.Redis, None]:
    redis_client = fake_aioredis.FakeRedis()
    yield redis_client
    await redis_client.flushall()
    await redis_client.aclose()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    fake_redis: aioredis.Redis,
    gateway: FakeGateway,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with DB, Redis and gateway dependencies overridden."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_get_redis() -> AsyncGenerator[aioredis.Redis, None]:
        yield fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def make_user(
    db: AsyncSession,
    *,
    onboarded: bool = False,
    is_admin: bool = False,
    is_active: bool = True,
) -> int:
    """Insert a user and return its id."""
    user = User(
        email=f"user-{uuid.uuid4().hex[:10]}@example.com",
        display_name="Test User",
        is_admin=is_admin,
        is_active=is_active,
        payout_account_id=f"acct_{uuid.uuid4().hex[:16]}" if onboarded else None,
    )
    db.add(user)
    await db.commit()
    return user.id


def auth_headers(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}
