import os
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# In-memory MongoDB: no replica set, so no multi-document transactions
os.environ.setdefault("MONGODB_DB_NAME", "resume_credits_test")
os.environ.setdefault("MONGODB_TRANSACTIONS", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("APP_TIMEZONE", "Asia/Kolkata")


class FakeGateway:
    """Stands in for RazorpayGateway; records calls and hands out unique order ids."""

    key_id = "rzp_test_key"

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[dict] = []

    async def create_order(self, amount, currency, receipt, notes):
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        if self.error is not None:
            raise self.error
        return {"id": f"order_{uuid.uuid4().hex[:14]}", "amount": amount, "currency": currency, "receipt": receipt}


@pytest_asyncio.fixture(autouse=True)
async def db() -> AsyncGenerator[None, None]:
    from app.db.init import init_db
    await init_db(client=AsyncMongoMockClient())
    yield


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def failing_gateway() -> FakeGateway:
    from app.core.exceptions import GatewayError
    return FakeGateway(error=GatewayError("Failed to create payment order", details={"description": "boom"}))


@pytest.fixture
def settings():
    from app.core.config import get_settings
    return get_settings()


@pytest.fixture
def sign():
    """Compute the checkout signature the gateway would send."""
    from app.core.config import get_settings
    from app.core.security import compute_payment_signature

    def _sign(order_id: str, payment_id: str) -> str:
        return compute_payment_signature(order_id, payment_id, get_settings().razorpay_key_secret)

    return _sign


@pytest_asyncio.fixture
async def account():
    from app.services import ledger
    return await ledger.get_or_create_account("idp|user-1", "user1@example.com", "User One", starting_credits=0)


@pytest_asyncio.fixture
async def client(gateway) -> AsyncGenerator[AsyncClient, None]:
    from app.deps import get_gateway
    from app.main import app
    app.dependency_overrides[get_gateway] = lambda: gateway
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def session_cookie():
    from app.core.security import create_session_cookie
    from app.deps import SESSION_COOKIE_NAME

    def _cookie(external_id: str, **extra) -> dict[str, str]:
        return {SESSION_COOKIE_NAME: create_session_cookie({"external_id": external_id, **extra})}

    return _cookie
