"""
Pytest configuration and fixtures.
"""

import os
from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock

# Settings are read at import time
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_secret")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.database import Base
import app.models  # noqa: F401  registers tables on Base.metadata
from app.services.gateway import GatewayTransaction, GatewayVerification

# Use in-memory SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(TEST_DB_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for a test."""
    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


def make_verification(reference: str, status: str = "success", amount_minor_units: int = 50000, **kwargs):
    """Gateway verification response for `reference`."""
    values = {
        "status": status,
        "reference": reference,
        "amount_minor_units": amount_minor_units,
        "currency": "GHS",
        "paid_at": datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc) if status == "success" else None,
        "channel": "mobile_money",
        "gateway_fees": 975,
        "gateway_id": f"gw-{reference}",
        "gateway_response": "Approved",
    }
    values.update(kwargs)
    return GatewayVerification(**values)


@pytest.fixture
def gateway():
    """Gateway double: initialization succeeds, verification reports success."""
    mock = AsyncMock()

    async def initialize_transaction(**kwargs):
        reference = kwargs["reference"]
        return GatewayTransaction(
            authorization_url=f"https://checkout.paystack.com/{reference}",
            access_code=f"access-{reference}",
            reference=reference,
        )

    async def verify_transaction(reference):
        return make_verification(reference)

    mock.initialize_transaction.side_effect = initialize_transaction
    mock.verify_transaction.side_effect = verify_transaction
    return mock


@pytest.fixture
def verification():
    """Factory for gateway verification responses."""
    return make_verification
