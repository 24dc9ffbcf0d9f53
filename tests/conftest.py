"""Pytest configuration and shared fixtures."""

import os
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

# Set required environment variables for testing BEFORE importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DATABASE_AUTO_MIGRATE", "false")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789abcdef0123")
os.environ.setdefault("JWT_AUDIENCE", "authenticated")

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.clock import FrozenClock
from app.core.database import Base
from app.database.models import User
from app.main import app
from app.services.verification.catalog import get_step_catalog
from app.services.verification.engine import VerificationEngine


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory SQLite database with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def catalog():
    return get_step_catalog()


@pytest.fixture
def create_user(db_session, clock):
    """Factory inserting a user row; returns the new user id."""

    async def _create(
        role: str = "student",
        email_verified: bool = False,
        first_name: str = "Ada",
        last_name: str = "Lovelace",
        email: str = None,
    ) -> UUID:
        user_id = uuid4()
        db_session.add(
            User(
                id=user_id,
                email=email or f"{user_id.hex[:12]}@example.edu",
                first_name=first_name,
                last_name=last_name,
                user_role=role,
                email_verified_at=clock.now() if email_verified else None,
                created_at=clock.now(),
                updated_at=clock.now(),
            )
        )
        await db_session.commit()
        return user_id

    return _create


@pytest.fixture
def make_engine(db_session, clock, catalog):
    """Factory for a VerificationEngine bound to the test session and clock."""

    def _make(**overrides) -> VerificationEngine:
        return VerificationEngine(db_session, catalog=catalog, clock=clock, **overrides)

    return _make
