"""Unit tests for the organization deletion gate."""

import pytest


@pytest.fixture
async def customer_id(db_session, billing, ctx) -> str:
    return await billing.bindings.ensure_customer(db_session, ctx)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_organization_without_billing_can_be_deleted(db_session, billing, ctx):
    check = await billing.deletion.can_delete(db_session, ctx.organization.id)

    assert check.can_delete
    assert check.reason == "No billing account"
    assert check.status == "none"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_customer_without_subscription_can_be_deleted(
    db_session, billing, ctx, customer_id
):
    await billing.sync.resync_customer(db_session, customer_id)

    check = await billing.deletion.can_delete(db_session, ctx.organization.id)

    assert check.can_delete
    assert not check.requires_cancellation


@pytest.mark.unit
@pytest.mark.asyncio
async def test_abandoned_checkout_does_not_block_deletion(db_session, billing, ctx):
    await billing.checkout.create_checkout_session(
        db_session,
        ctx,
        price_id="price_pro_month",
        success_url="https://app.test/ok",
        cancel_url="https://app.test/cancel",
    )

    check = await billing.deletion.can_delete(db_session, ctx.organization.id)

    assert check.can_delete
    assert "never completed" in check.reason


@pytest.mark.unit
@pytest.mark.asyncio
async def test_canceled_subscription_does_not_block_deletion(
    db_session, billing, fake_stripe, ctx, customer_id
):
    subscription = await fake_stripe.create_subscription(customer_id, "price_pro_month")
    await fake_stripe.cancel_subscription(subscription["id"])
    await billing.sync.resync_customer(db_session, customer_id)

    check = await billing.deletion.can_delete(db_session, ctx.organization.id)

    assert check.can_delete
    assert check.status == "canceled"


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("trial_days", [None, 14])
async def test_live_subscription_requires_cancellation(
    db_session, billing, fake_stripe, ctx, customer_id, trial_days
):
    await fake_stripe.create_subscription(
        customer_id, "price_personal_month", trial_period_days=trial_days
    )
    await billing.sync.resync_customer(db_session, customer_id)

    check = await billing.deletion.can_delete(db_session, ctx.organization.id)

    assert not check.can_delete
    assert check.requires_cancellation
    assert check.status == ("trialing" if trial_days else "active")
    assert check.cancels_at is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_scheduled_cancellation_blocks_until_period_end(
    db_session, billing, ctx, clock, customer_id, fake_stripe
):
    await fake_stripe.create_subscription(customer_id, "price_pro_month")
    await billing.sync.resync_customer(db_session, customer_id)
    await billing.plans.cancel_subscription(db_session, ctx)
    row = await billing.repository.get_current_snapshot(db_session, customer_id)

    check = await billing.deletion.can_delete(db_session, ctx.organization.id)

    assert not check.can_delete
    assert not check.requires_cancellation
    assert check.cancels_at == row.current_period_end

    clock.advance(days=31)
    await billing.sync.resync_customer(db_session, customer_id)

    check = await billing.deletion.can_delete(db_session, ctx.organization.id)
    assert check.can_delete
    assert check.status == "canceled"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_all_subscriptions(db_session, billing, fake_stripe, ctx, customer_id):
    first = await fake_stripe.create_subscription(customer_id, "price_pro_month")
    second = await fake_stripe.create_subscription(
        customer_id, "price_personal_month", trial_period_days=14
    )
    old = await fake_stripe.create_subscription(customer_id, "price_personal_year")
    await fake_stripe.cancel_subscription(old["id"])

    result = await billing.deletion.cancel_all_subscriptions(db_session, ctx.organization.id)

    assert result.success
    assert set(result.canceled_subscription_ids) == {first["id"], second["id"]}
    rows = await billing.repository.get_snapshots(db_session, customer_id)
    assert {row.status for row in rows} == {"canceled"}

    check = await billing.deletion.can_delete(db_session, ctx.organization.id)
    assert check.can_delete


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_all_collects_failures(db_session, billing, fake_stripe, ctx, customer_id):
    first = await fake_stripe.create_subscription(customer_id, "price_pro_month")
    second = await fake_stripe.create_subscription(customer_id, "price_enterprise_month")
    fake_stripe.failures.add(("cancel_subscription", first["id"]))

    result = await billing.deletion.cancel_all_subscriptions(db_session, ctx.organization.id)

    assert not result.success
    assert result.canceled_subscription_ids == [second["id"]]
    assert len(result.errors) == 1
    assert first["id"] in result.errors[0]
    assert fake_stripe.subscriptions[first["id"]]["status"] == "active"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_all_without_billing(db_session, billing, ctx):
    result = await billing.deletion.cancel_all_subscriptions(db_session, ctx.organization.id)

    assert result.success
    assert result.canceled_subscription_ids == []
