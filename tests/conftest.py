"""
Shared fixtures: in-memory database, data factories and authenticated clients.
"""

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

TEST_DATABASE_URL = "sqlite://"
TEST_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"


# Environment setup for tests
def setup_test_environment():
    """Setup environment variables for testing."""
    env_vars = {
        "DATABASE_URL": TEST_DATABASE_URL,
        "JWT_SECRET": TEST_JWT_SECRET,
        "ENVIRONMENT": "testing",
        "ENABLE_RATE_LIMITING": "false",
        "SENTRY_DSN": "",
        "LOG_LEVEL": "WARNING",
        "PAY_PER_IMAGE_UNIT_PRICE": "2.50",
    }

    for key, value in env_vars.items():
        os.environ[key] = value


# Settings are read on import, so the environment must exist first
setup_test_environment()

import jwt  # noqa: E402
from sqlmodel import SQLModel, Session, create_engine  # noqa: E402
from sqlmodel.pool import StaticPool  # noqa: E402

import apps.db.models  # noqa: E402,F401
from apps.db.models.subscription import Subscription, SubscriptionPlan  # noqa: E402

# Create test engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def pytest_configure(config):
    """Configure pytest for the engine tests."""
    setup_test_environment()


@pytest.fixture(scope="function")
def setup_test_database():
    """Setup test database for each test."""
    SQLModel.metadata.create_all(test_engine)

    yield test_engine

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session(setup_test_database):
    """Get database session for testing."""
    with Session(setup_test_database) as session:
        yield session


@pytest.fixture
def plan(session):
    """Silver plan with 60 images per month."""
    plan = SubscriptionPlan(
        id="silver",
        name="Silver",
        images_per_month=60,
        monthly_price=Decimal("99.00"),
    )
    session.add(plan)
    session.commit()
    session.refresh(plan)
    return plan


@pytest.fixture
def make_subscription(session, plan):
    """Factory for subscriptions with chosen usage."""

    def _make(
        customer_id="customer-1",
        images_limit=60,
        images_used=0,
        status="active",
        period_end=None,
        plan_id=None,
    ):
        now = datetime.now(timezone.utc)
        subscription = Subscription(
            customer_id=customer_id,
            plan_id=plan_id or plan.id,
            status=status,
            images_limit=images_limit,
            images_used=images_used,
            period_start=now - timedelta(days=1),
            period_end=period_end if period_end is not None else now + timedelta(days=29),
        )
        session.add(subscription)
        session.commit()
        session.refresh(subscription)
        return subscription

    return _make


def make_token(actor_id: str, role: str = "customer", secret: str = TEST_JWT_SECRET) -> str:
    """Sign a bearer token the way the auth service issues them."""
    payload = {
        "sub": actor_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def customer_headers():
    return {"Authorization": f"Bearer {make_token('customer-1', 'customer')}"}


@pytest.fixture
def other_customer_headers():
    return {"Authorization": f"Bearer {make_token('customer-2', 'customer')}"}


@pytest.fixture
def staff_headers():
    return {"Authorization": f"Bearer {make_token('staff-1', 'staff')}"}


@pytest.fixture
def client(session):
    """TestClient sharing the test session with the application."""
    from fastapi.testclient import TestClient
    from apps.api.main import app
    from apps.db.session import get_session

    def get_test_session():
        yield session

    app.dependency_overrides[get_session] = get_test_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
