"""
Pytest fixtures for test database, client, and authentication.

Runs against a temporary SQLite file (tables created and dropped per
test) with Redis and the periodic sweeper disabled, so the suite needs
no external services. Settings are read from the environment once, so
the overrides must happen before the application is imported.
"""

import os
import tempfile
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import AsyncGenerator

_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"seathold_test_{os.getpid()}.db")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_PATH}"
os.environ["REDIS_ENABLED"] = "false"
os.environ["EXPIRY_SWEEPER_ENABLED"] = "false"
os.environ["SHOW_LOCK_BACKEND"] = "local"
os.environ["ENVIRONMENT"] = "test"
os.environ["PAYMENT_CALLBACK_SECRET"] = "test-payment-secret"

import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from seathold.main import app  # noqa: E402
from seathold.db.base import Base  # noqa: E402
from seathold.db.session import AsyncSessionLocal, engine, get_db  # noqa: E402
from seathold.core.security import create_access_token  # noqa: E402
from seathold.models.show import Show  # noqa: E402
from seathold.services.fulfillment import dispatcher  # noqa: E402
from seathold.services.reservation_service import expiry_scheduler  # noqa: E402

PAYMENT_SECRET = "test-payment-secret"


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        yield session

    # Nothing may touch the tables once they are gone
    await expiry_scheduler.shutdown()
    await dispatcher.drain()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client; every request gets its own session on the test database."""

    async def override_get_db():
        async with AsyncSessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def _bearer(subject: str, role: str = "customer") -> dict:
    token = create_access_token(data={"sub": subject, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def auth_headers() -> dict:
    """Authorization headers for shopper X."""
    return _bearer("shopper-x")


@pytest_asyncio.fixture
async def other_auth_headers() -> dict:
    """Authorization headers for shopper Y."""
    return _bearer("shopper-y")


@pytest_asyncio.fixture
async def admin_headers() -> dict:
    return _bearer("admin-1", role="admin")


@pytest_asyncio.fixture
async def payment_headers() -> dict:
    """Headers the payment provider's callback presents."""
    return {"X-Payment-Signature": PAYMENT_SECRET}


@pytest_asyncio.fixture
async def test_show(db_session: AsyncSession) -> Show:
    """Create a show priced at 12.50 per seat."""
    show = Show(
        title="Test Screening",
        starts_at=datetime.now(timezone.utc) + timedelta(days=7),
        price=Decimal("12.50"),
        layout_ref="hall-1",
    )
    db_session.add(show)
    await db_session.commit()
    await db_session.refresh(show)
    return show


@pytest_asyncio.fixture
async def free_show(db_session: AsyncSession) -> Show:
    """A show with no valid price; it cannot be booked."""
    show = Show(
        title="Broken Pricing",
        starts_at=datetime.now(timezone.utc) + timedelta(days=7),
        price=Decimal("0"),
    )
    db_session.add(show)
    await db_session.commit()
    await db_session.refresh(show)
    return show
