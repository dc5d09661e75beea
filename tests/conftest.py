"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from billsync.config import settings
from billsync.core.database import Base, get_db
from billsync.main import create_app

# Import all models to ensure they're registered with Base.metadata
from billsync.modules.billing.models import Plan
from billsync.modules.billing.stripe_client import StripeClient, get_stripe_client
from billsync.modules.identity.models import Member, Organization, User
from tests.factories.billing import WEBHOOK_SECRET, make_plan
from tests.factories.identity import OrganizationFactory, UserFactory, bearer


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def webhook_secret(monkeypatch: pytest.MonkeyPatch) -> str:
    """Configure the Stripe webhook secret for every test."""
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)
    return WEBHOOK_SECRET


@pytest.fixture
async def engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session shared by the test and the app."""
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def stripe_mock() -> AsyncMock:
    """A Stripe client that never leaves the process."""
    client = AsyncMock(spec=StripeClient)
    client.find_customer_by_user.return_value = None
    client.create_customer.return_value = SimpleNamespace(id="cus_test123")
    client.create_checkout_session.return_value = SimpleNamespace(
        id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123"
    )
    client.create_portal_session.return_value = SimpleNamespace(
        url="https://billing.stripe.com/p/session/test_123"
    )
    client.update_subscription.return_value = SimpleNamespace(id="sub_test")
    return client


@pytest.fixture
async def app(db: AsyncSession, stripe_mock: AsyncMock):
    """Create test application instance."""
    application = create_app()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_stripe_client] = lambda: stripe_mock

    yield application

    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Provide async HTTP client for API testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


# ============================================================
# Identity Fixtures
# ============================================================


@pytest.fixture
async def user(db: AsyncSession) -> User:
    """Create a test user without a Stripe customer."""
    user = UserFactory.build()
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def other_user(db: AsyncSession) -> User:
    """Create a second, unrelated user."""
    user = UserFactory.build()
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def superuser(db: AsyncSession) -> User:
    """Create a user allowed to use admin operations."""
    user = UserFactory.build(is_superuser=True)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def organization(db: AsyncSession, user: User) -> Organization:
    """Create an organization owned by ``user``."""
    organization = OrganizationFactory.build()
    db.add(organization)
    await db.flush()
    db.add(Member(organization_id=organization.id, user_id=user.id, role="owner"))
    await db.commit()
    return organization


@pytest.fixture
def auth_headers(user: User) -> dict[str, str]:
    """Authorization headers for the test user."""
    return bearer(user)


@pytest.fixture
async def authenticated_client(
    app, auth_headers: dict[str, str]
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client authenticated as the test user."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers=auth_headers,
    ) as client:
        yield client


# ============================================================
# Catalog Fixtures
# ============================================================


@pytest.fixture
async def plans(db: AsyncSession) -> dict[str, Plan]:
    """Seed the starter, professional and enterprise plans."""
    seeded = {
        "starter": make_plan(
            id="starter",
            name="Starter",
            stripe_price_id="price_starter_monthly",
            stripe_annual_price_id="price_starter_annual",
            trial_period_days=14,
            sort_order=1,
            limits={"projects": 5, "storage": 10, "members": 3, "apiCalls": 10000},
        ),
        "professional": make_plan(
            id="professional",
            name="Professional",
            stripe_price_id="price_professional_monthly",
            stripe_annual_price_id="price_professional_annual",
            sort_order=2,
            limits={"projects": 25, "storage": 100, "members": 10, "apiCalls": 100000},
        ),
        "enterprise": make_plan(
            id="enterprise",
            name="Enterprise",
            stripe_price_id="price_enterprise_monthly",
            sort_order=3,
            limits={"projects": -1, "storage": -1, "members": -1, "apiCalls": -1},
        ),
    }
    db.add_all(seeded.values())
    await db.commit()
    return seeded
