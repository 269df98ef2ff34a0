"""Unit tests for checkout, checkout resumption and the billing portal."""

import pytest

from planstate.core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    InvalidStateError,
    NotFoundException,
    UnknownPriceError,
)
from planstate.platform.billing.billing_service import BillingService
from tests.fixtures.common import build_context

SUCCESS_URL = "https://app.test/billing/success"
CANCEL_URL = "https://app.test/billing/cancel"


async def _checkout(billing, db_session, ctx, price_id="price_pro_year"):
    return await billing.checkout.create_checkout_session(
        db_session, ctx, price_id=price_id, success_url=SUCCESS_URL, cancel_url=CANCEL_URL
    )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_checkout_creates_and_binds_the_customer(
    db_session, billing, fake_stripe, fake_directory, ctx
):
    session = await _checkout(billing, db_session, ctx)

    customer_id = await billing.bindings.get_binding(db_session, ctx.organization.id)
    assert customer_id in fake_stripe.customers
    assert fake_stripe.customers[customer_id]["email"] == ctx.organization.billing_email
    assert fake_directory.stripe_customers[ctx.organization.external_id] == customer_id

    stored = fake_stripe.checkout_sessions[session.checkout_session_id]
    assert session.checkout_url == stored["url"]
    assert stored["price_id"] == "price_pro_year"
    assert stored["metadata"]["organization_id"] == str(ctx.organization.id)

    pending = await billing.repository.get_pending_checkout(db_session, customer_id)
    assert pending.pending_checkout_session_id == session.checkout_session_id
    assert pending.pending_price_id == "price_pro_year"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_second_checkout_reuses_the_customer(db_session, billing, fake_stripe, ctx):
    await _checkout(billing, db_session, ctx)
    second = await _checkout(billing, db_session, ctx, price_id="price_personal_month")

    assert len(fake_stripe.customers) == 1
    customer_id = await billing.bindings.get_binding(db_session, ctx.organization.id)
    rows = await billing.repository.get_snapshots(db_session, customer_id)
    assert len(rows) == 1
    assert rows[0].pending_checkout_session_id == second.checkout_session_id
    assert rows[0].pending_price_id == "price_personal_month"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_checkout_is_refused_while_subscribed(db_session, billing, fake_stripe, ctx):
    session = await _checkout(billing, db_session, ctx)
    fake_stripe.complete_checkout(session.checkout_session_id)

    with pytest.raises(InvalidStateError):
        await _checkout(billing, db_session, ctx)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_checkout_with_unknown_price_raises(db_session, billing, fake_stripe, ctx):
    with pytest.raises(UnknownPriceError):
        await _checkout(billing, db_session, ctx, price_id="price_legacy")

    assert fake_stripe.customers == {}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_checkout_without_directory_raises(db_session, fake_stripe, ctx):
    billing = BillingService(stripe=fake_stripe, directory=None)

    with pytest.raises(ConfigurationError):
        await _checkout(billing, db_session, ctx)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_directory_outage_keeps_the_local_binding(
    db_session, billing, fake_directory, ctx
):
    fake_directory.fail = True

    with pytest.raises(ExternalServiceError):
        await _checkout(billing, db_session, ctx)

    assert await billing.bindings.get_binding(db_session, ctx.organization.id) is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_organization_outside_the_directory_is_bound_locally(
    db_session, billing, fake_directory, make_organization
):
    organization = await make_organization(name="Initech")
    organization.external_id = None
    await db_session.commit()
    ctx = build_context(organization)

    await _checkout(billing, db_session, ctx)

    assert await billing.bindings.get_binding(db_session, organization.id) is not None
    assert fake_directory.stripe_customers == {}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resume_returns_the_open_session(db_session, billing, ctx):
    session = await _checkout(billing, db_session, ctx)

    resumed = await billing.checkout.resume_checkout(
        db_session, ctx, success_url=SUCCESS_URL, cancel_url=CANCEL_URL
    )

    assert not resumed.is_new_session
    assert resumed.checkout_session_id == session.checkout_session_id
    assert resumed.checkout_url == session.checkout_url


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resume_replaces_an_expired_session(db_session, billing, fake_stripe, ctx, clock):
    session = await _checkout(billing, db_session, ctx)
    clock.advance(hours=25)

    resumed = await billing.checkout.resume_checkout(
        db_session, ctx, success_url=SUCCESS_URL, cancel_url=CANCEL_URL
    )

    assert resumed.is_new_session
    assert resumed.checkout_session_id != session.checkout_session_id
    assert fake_stripe.checkout_sessions[session.checkout_session_id]["status"] == "expired"
    assert fake_stripe.checkout_sessions[resumed.checkout_session_id]["price_id"] == (
        "price_pro_year"
    )

    customer_id = await billing.bindings.get_binding(db_session, ctx.organization.id)
    pending = await billing.repository.get_pending_checkout(db_session, customer_id)
    assert pending.pending_checkout_session_id == resumed.checkout_session_id


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resume_is_refused_while_subscribed(db_session, billing, fake_stripe, ctx):
    session = await _checkout(billing, db_session, ctx)
    fake_stripe.complete_checkout(session.checkout_session_id)
    sessions = len(fake_stripe.checkout_sessions)

    with pytest.raises(InvalidStateError):
        await billing.checkout.resume_checkout(
            db_session, ctx, success_url=SUCCESS_URL, cancel_url=CANCEL_URL
        )

    assert len(fake_stripe.checkout_sessions) == sessions


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resume_without_pending_checkout_offers_pro_monthly(
    db_session, billing, fake_stripe, ctx
):
    await billing.bindings.ensure_customer(db_session, ctx)

    resumed = await billing.checkout.resume_checkout(
        db_session, ctx, success_url=SUCCESS_URL, cancel_url=CANCEL_URL
    )

    assert resumed.is_new_session
    stored = fake_stripe.checkout_sessions[resumed.checkout_session_id]
    assert stored["price_id"] == "price_pro_month"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resume_requires_a_billing_account(db_session, billing, ctx):
    with pytest.raises(NotFoundException):
        await billing.checkout.resume_checkout(
            db_session, ctx, success_url=SUCCESS_URL, cancel_url=CANCEL_URL
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sync_after_checkout(db_session, billing, fake_stripe, ctx):
    missing = await billing.checkout.sync_after_checkout(db_session, ctx)
    assert not missing.success

    session = await _checkout(billing, db_session, ctx)
    fake_stripe.complete_checkout(session.checkout_session_id)

    result = await billing.checkout.sync_after_checkout(db_session, ctx)

    assert result.success
    customer_id = await billing.bindings.get_binding(db_session, ctx.organization.id)
    current = await billing.repository.get_current_snapshot(db_session, customer_id)
    assert current.tier == "pro"
    assert current.billing_interval == "year"
    assert current.payment_method_last4 == "4242"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_portal_session(db_session, billing, ctx):
    with pytest.raises(NotFoundException):
        await billing.checkout.create_portal_session(db_session, ctx, return_url=SUCCESS_URL)

    await billing.bindings.ensure_customer(db_session, ctx)
    portal = await billing.checkout.create_portal_session(db_session, ctx, return_url=SUCCESS_URL)

    assert portal.portal_url.startswith("https://billing.stripe.test/session/")
