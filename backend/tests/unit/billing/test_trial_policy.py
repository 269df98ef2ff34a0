"""Unit tests for free trials, from start through early conversion."""

import pytest

from planstate.core import datetime_utils
from planstate.core.exceptions import UnknownPriceError
from planstate.schemas.billing import ChangeEffect
from tests.fixtures.common import build_context


async def _snapshot(billing, db_session, organization_id):
    customer_id = await billing.bindings.get_binding(db_session, organization_id)
    rows = await billing.repository.get_snapshots(db_session, customer_id)
    return customer_id, rows[0]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_trial_upgrade_then_pause_without_payment_method(
    db_session, billing, fake_stripe, ctx, clock
):
    started_at = datetime_utils.utc_now_ms()

    result = await billing.trials.start_trial(db_session, ctx, price_id="price_personal_month")

    assert result.success
    assert result.trial_end == started_at + 14 * datetime_utils.MS_PER_DAY
    customer_id, row = await _snapshot(billing, db_session, ctx.organization.id)
    assert row.status == "trialing"
    assert row.trial_end == result.trial_end
    assert fake_stripe.customers[customer_id]["metadata"]["organization_id"] == str(
        ctx.organization.id
    )

    clock.advance(days=5)
    change = await billing.plans.change_plan(db_session, ctx, price_id="price_pro_year")

    assert change.success
    assert change.effect == ChangeEffect.IMMEDIATE
    _, row = await _snapshot(billing, db_session, ctx.organization.id)
    assert row.stripe_price_id == "price_pro_year"
    assert row.tier == "pro"
    assert row.status == "trialing"
    assert row.trial_end == result.trial_end
    assert await fake_stripe.list_invoices(customer_id) == []

    clock.advance(days=9)
    await billing.sync.resync_customer(db_session, customer_id)

    _, row = await _snapshot(billing, db_session, ctx.organization.id)
    assert row.status == "paused"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ending_trial_early_credits_unused_days(
    db_session, billing, fake_stripe, make_organization, clock
):
    organization = await make_organization(name="Globex")
    ctx = build_context(organization)
    await billing.trials.start_trial(db_session, ctx, price_id="price_personal_year")
    customer_id = await billing.bindings.get_binding(db_session, organization.id)
    fake_stripe.attach_payment_method(customer_id)

    clock.advance(days=5)
    now = datetime_utils.utc_now_ms()
    result = await billing.trials.end_trial_and_start_paying(db_session, ctx)

    assert result.success
    assert result.bonus_days == 9
    assert result.first_period_end - now == (365 + 9) * datetime_utils.MS_PER_DAY

    _, row = await _snapshot(billing, db_session, organization.id)
    assert row.status == "active"
    assert row.current_period_end == result.first_period_end
    assert row.trial_end == now

    invoices = await fake_stripe.list_invoices(customer_id, status="paid")
    assert [invoice["amount_paid"] for invoice in invoices] == [20000]

    trail = await billing.repository.get_audit_trail(db_session, organization.id)
    assert {event.action for event in trail} == {"trial_started", "trial_ended"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_partial_days_round_up(db_session, billing, fake_stripe, ctx, clock):
    await billing.trials.start_trial(db_session, ctx, price_id="price_personal_month")
    customer_id = await billing.bindings.get_binding(db_session, ctx.organization.id)
    fake_stripe.attach_payment_method(customer_id)

    clock.advance(days=3, hours=12)
    result = await billing.trials.end_trial_and_start_paying(db_session, ctx)

    assert result.success
    assert result.bonus_days == 11


@pytest.mark.unit
@pytest.mark.asyncio
async def test_one_trial_per_organization(db_session, billing, fake_stripe, ctx, clock):
    eligibility = await billing.trials.check_trial_eligibility(db_session, ctx.organization.id)
    assert eligibility.eligible
    assert eligibility.trial_days == 14

    await billing.trials.start_trial(db_session, ctx, price_id="price_personal_month")
    customer_id = await billing.bindings.get_binding(db_session, ctx.organization.id)
    subscription_id = next(iter(fake_stripe.subscriptions))
    await fake_stripe.cancel_subscription(subscription_id)
    await billing.sync.resync_customer(db_session, customer_id)

    eligibility = await billing.trials.check_trial_eligibility(db_session, ctx.organization.id)
    assert not eligibility.eligible

    clock.advance(days=1)
    again = await billing.trials.start_trial(db_session, ctx, price_id="price_personal_month")
    assert not again.success
    assert "already used" in again.message
    assert len(fake_stripe.subscriptions) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_trials_are_only_offered_on_the_personal_tier(db_session, billing, fake_stripe, ctx):
    result = await billing.trials.start_trial(db_session, ctx, price_id="price_pro_month")

    assert not result.success
    assert fake_stripe.subscriptions == {}
    eligibility = await billing.trials.check_trial_eligibility(db_session, ctx.organization.id)
    assert eligibility.eligible


@pytest.mark.unit
@pytest.mark.asyncio
async def test_trial_with_unknown_price_raises(db_session, billing, ctx):
    with pytest.raises(UnknownPriceError):
        await billing.trials.start_trial(db_session, ctx, price_id="price_legacy")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_no_trial_while_subscribed(db_session, billing, fake_stripe, ctx):
    customer_id = await billing.bindings.ensure_customer(db_session, ctx)
    await fake_stripe.create_subscription(customer_id, "price_pro_month")

    result = await billing.trials.start_trial(db_session, ctx, price_id="price_personal_month")

    assert not result.success
    eligibility = await billing.trials.check_trial_eligibility(db_session, ctx.organization.id)
    assert eligibility.eligible


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ending_trial_requires_a_payment_method(db_session, billing, ctx, clock):
    await billing.trials.start_trial(db_session, ctx, price_id="price_personal_month")
    clock.advance(days=2)

    result = await billing.trials.end_trial_and_start_paying(db_session, ctx)

    assert not result.success
    assert "payment method" in result.message


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ending_trial_requires_a_trial(db_session, billing, fake_stripe, ctx):
    result = await billing.trials.end_trial_and_start_paying(db_session, ctx)
    assert not result.success

    customer_id = await billing.bindings.ensure_customer(db_session, ctx)
    await fake_stripe.create_subscription(customer_id, "price_pro_month")

    result = await billing.trials.end_trial_and_start_paying(db_session, ctx)
    assert not result.success
    assert result.message == "No trial in progress"
