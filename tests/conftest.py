"""
Pytest configuration for the application
"""
import hashlib
import hmac
import json
import os
import time
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession

from docmeter.api.deps import get_billing, get_clock, get_rate_limiter
from docmeter.auth.jwt import create_access_token
from docmeter.core.clock import Clock
from docmeter.core.config import BillingSettings, settings
from docmeter.db.base import Base
from docmeter.db.models.account import Account
from docmeter.db.session import dispose_engine, get_engine, get_session_factory
from docmeter.main import create_application
from docmeter.services.billing_provider import StripeBilling, SubscriptionDetails
from docmeter.services.limits import RateLimiter


# Set test environment and override runtime settings to avoid external deps
os.environ["ENV"] = "test"
settings.ENV = "test"
settings.JWT_SECRET = "test-secret"
settings.ledger.backend_type = "database"
settings.limits.rate_limit_enabled = True
settings.limits.rate_limit_rpm = 1000
settings.billing.stripe_webhook_secret = "whsec_test"

API_PREFIX = f"{settings.API_PREFIX}/v1"


class FakeRedis:
    """Minimal async Redis stub for rate limiting tests."""

    def __init__(self) -> None:
        self.store: Dict[str, int] = {}

    async def incr(self, key: str) -> int:
        current = int(self.store.get(key, 0)) + 1
        self.store[key] = current
        return current

    async def expire(self, key: str, seconds: int) -> None:
        self.store.setdefault(f"{key}:ttl", seconds)

    async def aclose(self) -> None:
        return None


class FakeBilling(StripeBilling):
    """Keeps real webhook verification, records outbound provider calls."""

    def __init__(self) -> None:
        super().__init__(BillingSettings(stripe_webhook_secret="whsec_test"))
        self.calls: List[tuple] = []
        self.subscription = SubscriptionDetails(
            current_period_end=datetime(2026, 11, 19, tzinfo=timezone.utc),
            cancel_at_period_end=False,
        )

    async def create_customer(self, email: str, account_id: int) -> str:
        self.calls.append(("create_customer", email, account_id))
        return f"cus_{account_id}"

    async def create_checkout_session(self, customer_id, price_id, account_id, plan):
        self.calls.append(("create_checkout_session", customer_id, price_id, account_id, plan))
        return "cs_test_1", "https://checkout.stripe.test/cs_test_1"

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionDetails:
        self.calls.append(("retrieve_subscription", subscription_id))
        return self.subscription

    async def cancel_at_period_end(self, subscription_id: str) -> None:
        self.calls.append(("cancel_at_period_end", subscription_id))


class MutableClock(Clock):
    """Clock whose reading tests can move forward."""

    def __init__(self, now: datetime) -> None:
        self.now = now
        super().__init__(source=lambda: self.now)


def sign_payload(payload: bytes, secret: str = "whsec_test", timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header value for ``payload``."""

    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(
    event_id: str,
    event_type: str,
    obj: Dict[str, Any],
    created: Optional[int] = None,
) -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": created if created is not None else int(time.time()),
            "data": {"object": obj},
        }
    ).encode()


def build_auth_header(account_id: int, email: str = "user@example.com") -> Dict[str, str]:
    token = create_access_token(account_id, email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_billing() -> FakeBilling:
    return FakeBilling()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def test_db_engine(tmp_path):
    """
    Create a fresh SQLite database for each test.
    """
    settings.DATABASE_URI = f"sqlite+aiosqlite:///{tmp_path / 'test_app.db'}"
    await dispose_engine()
    engine = get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await dispose_engine()


@pytest_asyncio.fixture
async def test_app(
    test_db_engine, fake_redis, fake_billing, clock
) -> AsyncGenerator[FastAPI, None]:
    """
    Create a FastAPI test application.
    """
    app = create_application()
    limiter = RateLimiter(fake_redis, settings.limits)

    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_billing] = lambda: fake_billing
    app.dependency_overrides[get_clock] = lambda: clock.snapshot()

    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def test_db(test_app: FastAPI) -> AsyncGenerator[AsyncSession, None]:
    """
    Session for seeding and inspecting rows outside the request cycle.
    """
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Create an async HTTP client for testing.
    """
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as client:
        yield client


async def seed_account(
    session: AsyncSession,
    *,
    email: str = "user@example.com",
    tier: str = "free",
    status: str = "active",
    customer_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
) -> Account:
    account = Account(
        email=email,
        password_hash="not-a-real-hash",
        name="Test User",
        subscription_tier=tier,
        subscription_status=status,
        stripe_customer_id=customer_id,
        stripe_subscription_id=subscription_id,
    )
    session.add(account)
    await session.commit()
    await session.refresh(account)
    return account
