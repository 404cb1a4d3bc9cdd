"""Test configuration and fixtures."""

import os

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BEARER_TOKEN_SECRET", "test-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("WEBHOOK_BACKOFF_SECONDS", "0")

from datetime import time, timedelta
from types import SimpleNamespace

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourdesk.core.clock import utctoday
from tourdesk.core.database import Base, build_engine, get_db
from tourdesk.models import *  # noqa: F403 - Import all models
from tourdesk.schemas.booking import CreateBookingRequest, CustomerInfo
from tourdesk.schemas.common import Money
from tourdesk.schemas.schedule import RecurrenceRuleIn
from tourdesk.schemas.tour import CreateTourRequest, SlotType
from tourdesk.services.schedule_service import ScheduleService, first_weekday_on_or_after
from tourdesk.services.tour_service import TourService

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

MONDAY = 0
TOUR_START = time(9, 0)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = build_engine(TEST_DATABASE_URL)

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session):
    """Create the FastAPI application bound to the test session."""
    from tourdesk.main import create_app

    app = create_app()

    # Override database dependency
    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def make_token(subject: str = "admin-1", roles: list[str] | None = None) -> str:
    return jwt.encode(
        {"sub": subject, "email": f"{subject}@example.com", "roles": roles if roles is not None else ["admin"]},
        "test-secret",
        algorithm="HS256",
    )


@pytest.fixture
def admin_headers():
    """Authorization header for an admin caller."""
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def customer_headers():
    """Authorization header for a caller without the admin role."""
    return {"Authorization": f"Bearer {make_token('agent-7', roles=['reservation_agent'])}"}


@pytest.fixture
def next_monday():
    """First Monday strictly after today."""
    return first_weekday_on_or_after(utctoday() + timedelta(days=1), MONDAY)


@pytest.fixture
def sample_tour_data():
    """Sample tour data for testing."""
    return {
        "title": "Old Town Walking Tour",
        "slug": "old-town-walking-tour",
        "description": "Two hours through the lanes of the old town",
        "category": "walking",
        "meeting_point": "Clock tower",
        "duration_minutes": 120,
        "capacity": 8,
        "rate": {"amount": 2500, "currency": "USD"},
        "slot_types": [
            {"name": "adult", "price_amount": 2500},
            {"name": "child", "price_amount": 1000},
        ],
    }


@pytest.fixture
def make_tour(test_session):
    """Factory creating a tour that runs every Monday at 09:00 with generated occurrences."""

    async def _make(slug: str = "old-town-walking-tour", capacity: int = 8, rate: int = 2500, rules=None):
        tour = await TourService(test_session).create_tour(
            CreateTourRequest(
                title=slug.replace("-", " ").title(),
                slug=slug,
                capacity=capacity,
                rate=Money(amount=rate, currency="USD"),
                meeting_point="Clock tower",
                slot_types=[
                    SlotType(name="adult", price_amount=rate),
                    SlotType(name="child", price_amount=rate // 2),
                ],
            )
        )
        rules = rules or [RecurrenceRuleIn(weekday=MONDAY, start_time=TOUR_START)]
        await ScheduleService(test_session).save_recurrence_rules(tour.id, rules)
        return tour

    return _make


@pytest.fixture
def booking_request(next_monday):
    """Factory for booking requests on the next Monday 09:00 occurrence."""

    def _request(tour, slots: int = 2, email: str = "ana.silva@example.com", **overrides) -> CreateBookingRequest:
        data = {
            "tour_id": str(tour.id),
            "date": next_monday,
            "start_time": TOUR_START,
            "slots": slots,
            "customer": CustomerInfo(first_name="Ana", last_name="Silva", email=email),
        }
        data.update(overrides)
        return CreateBookingRequest(**data)

    return _request


class FakeStripeGateway:
    """In-memory stand-in for the Stripe gateway that records every call."""

    def __init__(self, charge_amount: int = 5000):
        self.calls: list[tuple[str, dict]] = []
        self.sessions: dict[str, SimpleNamespace] = {}
        self.charge = SimpleNamespace(id="ch_1", amount=charge_amount, amount_refunded=0, refunded=False)
        self._counter = 0

    @property
    def configured(self) -> bool:
        return True

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}"

    async def create_payment_intent(self, amount, currency, receipt_email, metadata):
        self.calls.append(("create_payment_intent", {"amount": amount, "currency": currency, "metadata": metadata}))
        intent_id = self._next_id("pi")
        return SimpleNamespace(id=intent_id, client_secret=f"{intent_id}_secret")

    async def create_checkout_session(self, line_items, success_url, cancel_url, metadata, customer_email=None,
                                      coupon_id=None, idempotency_key=None):
        self.calls.append((
            "create_checkout_session",
            {"line_items": line_items, "metadata": metadata, "coupon_id": coupon_id, "success_url": success_url},
        ))
        session_id = self._next_id("cs")
        session = SimpleNamespace(
            id=session_id,
            url=f"https://checkout.stripe.com/c/pay/{session_id}",
            status="open",
            metadata=dict(metadata),
        )
        self.sessions[session_id] = session
        return session

    async def retrieve_checkout_session(self, session_id):
        return self.sessions[session_id]

    async def expire_checkout_session(self, session_id):
        self.calls.append(("expire_checkout_session", {"session_id": session_id}))
        self.sessions[session_id].status = "expired"
        return self.sessions[session_id]

    async def retrieve_payment_intent(self, payment_intent_id):
        return SimpleNamespace(id=payment_intent_id, latest_charge=self.charge.id)

    async def retrieve_charge(self, charge_id):
        return SimpleNamespace(**vars(self.charge))

    async def create_refund(self, payment_intent_id, amount=None):
        refunded = amount if amount is not None else self.charge.amount - self.charge.amount_refunded
        self.charge.amount_refunded += refunded
        self.charge.refunded = self.charge.amount_refunded >= self.charge.amount
        self.calls.append(("create_refund", {"payment_intent_id": payment_intent_id, "amount": amount}))
        return SimpleNamespace(id=self._next_id("re"))

    async def create_coupon(self, code, discount_type, discount_value, currency, max_uses=None, expires_at=None):
        self.calls.append(("create_coupon", {"code": code}))
        return SimpleNamespace(id=f"coupon_{code}")

    async def delete_coupon(self, coupon_id):
        self.calls.append(("delete_coupon", {"coupon_id": coupon_id}))

    def construct_event(self, payload, signature):
        return None


@pytest.fixture
def fake_gateway():
    return FakeStripeGateway()
