"""Common test fixtures."""

import hashlib
import hmac
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from planstate import crud, schemas
from planstate.api.context import ApiContext
from planstate.core import datetime_utils
from planstate.core.logging import logger
from planstate.models import Organization
from planstate.platform.billing.billing_service import BillingService
from tests.fixtures.fake_stripe import FakeDirectory, FakeStripe

START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    """Frozen clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def now_ms(self) -> int:
        return int(self.current.timestamp() * datetime_utils.MS_PER_SECOND)

    def advance(self, days: int = 0, hours: int = 0, seconds: int = 0) -> None:
        self.current += timedelta(days=days, hours=hours, seconds=seconds)


def build_context(organization: Organization) -> ApiContext:
    """Admin request context acting on ``organization``."""
    request_id = str(uuid.uuid4())
    return ApiContext(
        request_id=request_id,
        organization=schemas.Organization.model_validate(organization, from_attributes=True),
        auth_method="admin",
        logger=logger.with_context(
            request_id=request_id, organization_id=str(organization.id), auth_method="admin"
        ),
    )


@pytest.fixture
def clock(monkeypatch) -> Clock:
    """Freeze billing time at START."""
    frozen = Clock(START)
    monkeypatch.setattr(datetime_utils, "utc_now_ms", frozen.now_ms)
    return frozen


@pytest.fixture
def fake_stripe(clock) -> FakeStripe:
    """In-memory Stripe account following the frozen clock."""
    return FakeStripe()


@pytest.fixture
def fake_directory() -> FakeDirectory:
    """In-memory WorkOS directory."""
    return FakeDirectory()


@pytest.fixture
def billing(fake_stripe, fake_directory) -> BillingService:
    """Billing service wired to the fakes."""
    return BillingService(stripe=fake_stripe, directory=fake_directory)


@pytest.fixture
def make_organization(db_session) -> Callable:
    """Factory for organizations mirrored from the directory."""

    async def _make(
        name: str = "Acme",
        external_id: Optional[str] = None,
        member_count: int = 1,
        is_personal: bool = False,
    ) -> Organization:
        return await crud.organization.create(
            db_session,
            obj_in=schemas.OrganizationCreate(
                name=name,
                external_id=external_id or f"org_{uuid.uuid4().hex[:12]}",
                billing_email=f"billing@{name.lower()}.test",
                member_count=member_count,
                is_personal=is_personal,
            ),
        )

    return _make


@pytest.fixture
async def organization(make_organization) -> Organization:
    """A directory-backed organization with two members."""
    return await make_organization(member_count=2)


@pytest.fixture
def ctx(organization) -> ApiContext:
    """Admin request context for the default organization."""
    return build_context(organization)


def stripe_signature(payload: bytes, secret: str = "whsec_test_secret") -> str:
    """``stripe-signature`` header for ``payload``, signed now."""
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"
