"""
Test Configuration and Fixtures

Runs against an in-memory SQLite database by default; set TEST_DATABASE_URL
to run against PostgreSQL. Each test runs inside a transaction that is
rolled back afterwards.
"""

import os

# Settings are cached on first import, so the environment must be in place first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-portal-tests")
os.environ.setdefault("STRIPE_LITE_BREW_PRICE_ID", "price_lite")
os.environ.setdefault("STRIPE_SIGNATURE_BLEND_PRICE_ID", "price_signature")
os.environ.setdefault("STRIPE_TARO_CLOUD_PRICE_ID", "price_taro")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import uuid
from datetime import datetime, timedelta

import pytest
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal.config import get_settings
from portal.database import Base


TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")

LITE_PLAN = "price_lite"
SIGNATURE_PLAN = "price_signature"
TARO_PLAN = "price_taro"


@pytest.fixture(scope="session")
def db_engine():
    """Create a test database engine (session-scoped for performance)"""
    import portal.models  # noqa: F401  (registers models on Base)

    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a test database session with transaction rollback"""
    connection = db_engine.connect()
    transaction = connection.begin()

    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=connection
    )
    session = TestingSessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def make_user(db_session):
    """Factory for users, optionally with a plan subscription"""
    from portal.models import User, UserRole, Subscription, SubscriptionStatus

    def _make_user(
        email=None,
        plan_id=LITE_PLAN,
        status=SubscriptionStatus.ACTIVE.value,
        role=UserRole.CLIENT.value,
        name="Test Client",
        company=None,
    ):
        user = User(
            id=uuid.uuid4(),
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            name=name,
            company=company,
            role=role,
            is_active=True,
        )
        db_session.add(user)
        if plan_id is not None:
            db_session.add(Subscription(
                user_id=user.id,
                plan_id=plan_id,
                status=status,
                current_period_end=datetime.utcnow() + timedelta(days=30),
            ))
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def admin_user(make_user):
    from portal.models import UserRole
    return make_user(email="admin@agency.example.com", plan_id=None, role=UserRole.ADMIN.value, name="Agency Admin")


def make_token(user) -> str:
    """Access token as the identity provider would issue it"""
    settings = get_settings()
    return jwt.encode(
        {"sub": str(user.id), "exp": datetime.utcnow() + timedelta(minutes=15)},
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def auth_header(user) -> dict:
    return {"Authorization": f"Bearer {make_token(user)}"}


@pytest.fixture
def client(db_session):
    """Create a test client with database dependency override"""
    from fastapi.testclient import TestClient
    from portal.main import app
    from portal.database import get_db

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
