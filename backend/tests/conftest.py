"""
Pytest configuration and shared fixtures for backend tests.
"""

import json
import sys
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from typing import AsyncGenerator, Optional
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import after path is set
from adapters.payments.stripe_adapter import (
    BillingEvent,
    StripeCheckoutSession,
    StripeSubscription,
)
from core.domain.team import TeamRole, derive_permissions
from core.errors import BillingConfigurationError, BillingSignatureError
from core.interfaces.services import BillingProvider
from core.security import TokenService
from infrastructure.config import get_settings
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Base,
    SubscriptionPlan,
    Team,
    TeamMember,
    TeamSubscription,
    User,
)
from services.permissions import apply_permissions
from services.plan_catalog import PlanCatalog

settings = get_settings()
token_service = TokenService(
    secret_key=settings.jwt_secret_key,
    algorithm=settings.jwt_algorithm,
)


# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

VALID_SIGNATURE = "t=1,v1=valid"


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# ============================================================================
# Users and auth
# ============================================================================


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory creating persisted users."""

    async def _make_user(email: Optional[str] = None, name: str = "Planner") -> User:
        user = User(
            id=str(uuid4()),
            email=email or f"user-{uuid4().hex[:8]}@example.com",
            name=name,
            is_active=True,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def test_user(make_user) -> User:
    """Create a test user."""
    return await make_user(email="test@example.com", name="Test User")


@pytest.fixture
async def other_user(make_user) -> User:
    """A second user, outside the test user's team."""
    return await make_user(email="other@example.com", name="Other User")


def headers_for(user: User) -> dict:
    access_token = token_service.create_access_token(user_id=user.id, email=user.email)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authentication headers for test user."""
    return headers_for(test_user)


# ============================================================================
# Teams, plans and subscriptions
# ============================================================================


@pytest.fixture
async def team(db_session: AsyncSession, test_user: User) -> Team:
    """Team owned by test_user."""
    team = Team(id=str(uuid4()), name="Bloom Weddings", owner_id=test_user.id)
    db_session.add(team)
    await db_session.commit()
    await db_session.refresh(team)
    return team


@pytest.fixture
def add_member(db_session: AsyncSession):
    """Factory adding a user to a team with role defaults, optionally overridden."""

    async def _add_member(team: Team, user: User, role: TeamRole = TeamRole.MEMBER, **flags) -> TeamMember:
        member = TeamMember(
            id=str(uuid4()),
            team_id=team.id,
            user_id=user.id,
            role=role.value,
            invited_by=team.owner_id,
        )
        apply_permissions(member, derive_permissions(role, flags))
        db_session.add(member)
        await db_session.commit()
        await db_session.refresh(member)
        return member

    return _add_member


@pytest.fixture
async def plans(db_session: AsyncSession) -> dict[str, SubscriptionPlan]:
    """Seeded plan rows with test price ids."""
    await PlanCatalog(db_session).seed_plans()
    result = await db_session.execute(select(SubscriptionPlan))
    rows = {row.name: row for row in result.scalars().all()}
    for name, row in rows.items():
        row.stripe_price_id_monthly = f"price_{name}_monthly"
        row.stripe_price_id_annual = f"price_{name}_annual"
    await db_session.commit()
    return rows


@pytest.fixture
def subscribe(db_session: AsyncSession):
    """Factory giving a team a stored subscription on a plan."""

    async def _subscribe(
        team: Team,
        plan: Optional[SubscriptionPlan],
        status: str = "active",
        customer_id: str = "cus_test",
        subscription_id: Optional[str] = "sub_test",
    ) -> TeamSubscription:
        row = TeamSubscription(
            id=str(uuid4()),
            team_id=team.id,
            plan_id=plan.id if plan else None,
            status=status,
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_id,
        )
        db_session.add(row)
        await db_session.commit()
        await db_session.refresh(row)
        return row

    return _subscribe


# ============================================================================
# Billing provider fake
# ============================================================================


class FakeBillingProvider(BillingProvider):
    """
    In-memory billing provider.

    Signatures equal to VALID_SIGNATURE verify; ``webhook_configured=False``
    behaves like a missing signing secret.
    """

    def __init__(self, webhook_configured: bool = True):
        self.webhook_configured = webhook_configured
        self.subscriptions: dict[str, dict] = {}
        self.customers: dict[str, dict] = {}
        self.checkout_sessions: list[dict] = []

    def add_subscription(self, data: dict) -> None:
        self.subscriptions[data["id"]] = data

    async def create_customer(self, email, name, team_id):
        customer_id = f"cus_{len(self.customers) + 1}"
        self.customers[customer_id] = {"email": email, "name": name, "team_id": team_id}
        return customer_id

    async def create_checkout_session(self, customer_id, price_id, team_id, plan_id, success_url, cancel_url):
        session = {
            "id": f"cs_{len(self.checkout_sessions) + 1}",
            "url": "https://checkout.stripe.test/session",
            "customer": customer_id,
            "metadata": {"team_id": team_id, "plan_id": plan_id},
            "price_id": price_id,
        }
        self.checkout_sessions.append(session)
        return StripeCheckoutSession.from_api_response(session)

    async def create_portal_session(self, customer_id, return_url):
        return f"https://billing.stripe.test/portal/{customer_id}"

    async def retrieve_subscription(self, subscription_id):
        return StripeSubscription.from_api_response(self.subscriptions[subscription_id])

    async def list_subscriptions(self, customer_id):
        subs = [
            StripeSubscription.from_api_response(data)
            for data in self.subscriptions.values()
            if data.get("customer") == customer_id
        ]
        return sorted(subs, key=lambda s: s.created.timestamp() if s.created else 0, reverse=True)

    def construct_event(self, payload, signature):
        if not self.webhook_configured:
            raise BillingConfigurationError("Webhook verification not configured")
        if signature != VALID_SIGNATURE:
            raise BillingSignatureError("Invalid webhook signature")
        return BillingEvent.from_payload(json.loads(payload))


@pytest.fixture
def billing() -> FakeBillingProvider:
    return FakeBillingProvider()


def subscription_payload(
    subscription_id: str = "sub_123",
    customer_id: str = "cus_123",
    status: str = "active",
    price_id: str = "price_professional_monthly",
    metadata: Optional[dict] = None,
    **extra,
) -> dict:
    """Stripe subscription object as delivered in webhooks."""
    data = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "items": {
            "data": [
                {
                    "price": {"id": price_id, "recurring": {"interval": "month"}},
                    "current_period_start": 1735689600,
                    "current_period_end": 1738368000,
                }
            ]
        },
        "cancel_at_period_end": False,
        "canceled_at": None,
        "trial_start": None,
        "trial_end": None,
        "created": 1735689600,
        "metadata": metadata or {},
    }
    data.update(extra)
    return data


def event_payload(event_type: str, data: dict, event_id: Optional[str] = None) -> dict:
    return {
        "id": event_id or f"evt_{uuid4().hex[:12]}",
        "object": "event",
        "type": event_type,
        "created": 1735689600,
        "livemode": False,
        "data": {"object": data},
    }


# ============================================================================
# HTTP client
# ============================================================================


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    billing: FakeBillingProvider,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from main import app
    from api.dependencies import get_billing_provider

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_provider] = lambda: billing

    # Reset rate limiter state between tests to prevent cross-test 429s
    app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
