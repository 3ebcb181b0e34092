"""
Pytest fixtures for test database, client, authentication and the payment
processor.

Each test gets a fresh database (in-memory SQLite unless TEST_DATABASE_URL
points elsewhere) and an HTTP client that shares the test's session.
"""

import hashlib
import hmac
import json
import os
import time
from typing import AsyncGenerator, Optional

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.main import app
from app.db.base import Base
from app.db.session import get_db
from app.core.config import get_settings
from app.core.errors import ExternalProcessorError
from app.core.security import create_access_token
from app.infrastructure.stripe_processor import StripeProcessor
from app.models import Booking, BookingTarget, Content, Product, RoutingConfig
from app.services.interfaces.payment_processor import CheckoutRequest, CheckoutSession
from app.services.processor_factory import get_payment_processor

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")

CREATOR_ID = "creator-1"
BUYER_ID = "buyer-1"
OTHER_USER_ID = "someone-else"


class FakeProcessor(StripeProcessor):
    """Real webhook verification, in-memory checkout sessions."""

    def __init__(self):
        settings = get_settings()
        super().__init__(api_key="sk_test_dummy", webhook_secret=settings.STRIPE_WEBHOOK_SECRET)
        self.requests: list[CheckoutRequest] = []
        self.fail_with: Optional[ExternalProcessorError] = None

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        n = len(self.requests)
        return CheckoutSession(id=f"cs_test_{n}", url=f"https://checkout.stripe.test/c/pay/cs_test_{n}")


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {}


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, **_engine_kwargs(TEST_DATABASE_URL))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, processor: FakeProcessor) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB and processor dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_processor] = lambda: processor

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def bearer(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': user_id})}"}


@pytest.fixture
def creator_headers() -> dict:
    return bearer(CREATOR_ID)


@pytest.fixture
def buyer_headers() -> dict:
    return bearer(BUYER_ID)


def sign_payload(payload: bytes, secret: Optional[str] = None, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    secret = secret or get_settings().STRIPE_WEBHOOK_SECRET
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: Optional[str] = None) -> dict:
    return {
        "id": event_id or f"evt_{obj.get('id', 'x')}_{event_type}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


async def post_event(client: AsyncClient, event: dict, signature: Optional[str] = None):
    payload = json.dumps(event).encode()
    return await client.post(
        "/api/stripe/webhook",
        content=payload,
        headers={
            "Stripe-Signature": signature if signature is not None else sign_payload(payload),
            "Content-Type": "application/json",
        },
    )


async def add_target(
    db: AsyncSession,
    name: str,
    url: str,
    weight: int = 1,
    creator_id: str = CREATOR_ID,
    active: bool = True,
) -> BookingTarget:
    target = BookingTarget(
        creator_id=creator_id,
        name=name,
        destination_url=url,
        weight=weight,
        active=active,
        uses_count=0,
    )
    db.add(target)
    await db.commit()
    return target


async def set_mode(db: AsyncSession, mode: str, creator_id: str = CREATOR_ID, default_target_id=None) -> None:
    db.add(RoutingConfig(creator_id=creator_id, mode=mode, default_target_id=default_target_id, version=1))
    await db.commit()


@pytest_asyncio.fixture
async def product(db_session: AsyncSession) -> Product:
    product = Product(title="1:1 Coaching", amount_cents=120000, currency="usd")
    db_session.add(product)
    await db_session.commit()
    return product


@pytest_asyncio.fixture
async def content(db_session: AsyncSession, product: Product) -> Content:
    content = Content(creator_id=CREATOR_ID, title="Coaching offer", product_id=product.id)
    db_session.add(content)
    await db_session.commit()
    return content


@pytest_asyncio.fixture
async def booking(db_session: AsyncSession, content: Content) -> Booking:
    booking = Booking(content_id=content.id, buyer_id=BUYER_ID, creator_id=CREATOR_ID, status="booked")
    db_session.add(booking)
    await db_session.commit()
    return booking
