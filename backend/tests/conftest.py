"""Common test fixtures and configuration for pytest.

Billing tests run against an in-memory SQLite database and an in-memory Stripe
account. The clock is frozen and only moves through ``clock.advance``, which
moves Stripe's clock along with it.
"""

import os

os.environ.update(
    {
        "STRIPE_ENABLED": "false",
        "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
        "STRIPE_PRICE_PERSONAL_MONTHLY": "price_personal_month",
        "STRIPE_PRICE_PERSONAL_YEARLY": "price_personal_year",
        "STRIPE_PRICE_PRO_MONTHLY": "price_pro_month",
        "STRIPE_PRICE_PRO_YEARLY": "price_pro_year",
        "STRIPE_PRICE_ENTERPRISE_MONTHLY": "price_enterprise_month",
        "STRIPE_PRICE_ENTERPRISE_YEARLY": "price_enterprise_year",
        "TRIAL_PERIOD_DAYS": "14",
        "REFUND_GUARANTEE_DAYS": "30",
        "CHECKOUT_SESSION_TTL_HOURS": "24",
    }
)
os.environ.pop("WORKOS_API_KEY", None)

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from planstate.models._base import Base  # noqa: E402

# Import all fixtures so they are automatically available for all tests
from tests.fixtures.common import (  # noqa: E402, F401
    billing,
    clock,
    ctx,
    fake_directory,
    fake_stripe,
    make_organization,
    organization,
)


@pytest.fixture
async def db_engine():
    """Create an in-memory database with every table for each test function."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a new database session.

    Each test gets a fresh session on a fresh database.
    """
    async with AsyncSession(db_engine, expire_on_commit=False) as session:
        yield session
