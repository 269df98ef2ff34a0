"""Unit tests for the read-only billing queries."""

import uuid

import pytest

from planstate.core.exceptions import NotFoundException
from planstate.platform.billing.plan_logic import UNLIMITED_SEATS
from tests.fixtures.common import build_context


@pytest.fixture
async def subscribe(db_session, billing, fake_stripe):
    """Subscribe an organization through checkout and return its Stripe customer ID."""

    async def _subscribe(ctx, price_id: str) -> str:
        session = await billing.checkout.create_checkout_session(
            db_session,
            ctx,
            price_id=price_id,
            success_url="https://app.test/ok",
            cancel_url="https://app.test/cancel",
        )
        fake_stripe.complete_checkout(session.checkout_session_id)
        await billing.checkout.sync_after_checkout(db_session, ctx)
        return await billing.bindings.get_binding(db_session, ctx.organization.id)

    return _subscribe


@pytest.mark.unit
@pytest.mark.asyncio
async def test_summary_of_an_unbilled_organization(db_session, billing, ctx):
    summary = await billing.queries.get_subscription_summary(db_session, ctx.organization.id)

    assert not summary.has_subscription
    assert summary.status == "none"
    assert summary.tier == "personal"
    assert summary.features == ["basic_api", "community_support"]
    assert not summary.pending_setup
    assert summary.money_back_guarantee is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_summary_flags_an_unfinished_checkout(db_session, billing, ctx):
    await billing.checkout.create_checkout_session(
        db_session,
        ctx,
        price_id="price_pro_month",
        success_url="https://app.test/ok",
        cancel_url="https://app.test/cancel",
    )

    summary = await billing.queries.get_subscription_summary(db_session, ctx.organization.id)

    assert summary.pending_setup
    assert not summary.has_subscription


@pytest.mark.unit
@pytest.mark.asyncio
async def test_summary_of_a_subscribed_organization(db_session, billing, ctx, clock, subscribe):
    await subscribe(ctx, "price_pro_month")
    clock.advance(days=5)

    summary = await billing.queries.get_subscription_summary(db_session, ctx.organization.id)

    assert summary.has_subscription
    assert summary.status == "active"
    assert summary.tier == "pro"
    assert summary.plan_name == "Pro Plan"
    assert summary.seat_limit == 3
    assert summary.payment_method_brand == "visa"
    assert not summary.pending_setup
    assert summary.money_back_guarantee.eligible
    assert summary.money_back_guarantee.days_since_start == 5
    assert summary.money_back_guarantee.days_remaining == 25
    assert summary.scheduled_tier is None

    await billing.plans.change_plan(db_session, ctx, price_id="price_personal_month")
    summary = await billing.queries.get_subscription_summary(db_session, ctx.organization.id)

    assert summary.tier == "pro"
    assert summary.scheduled_price_id == "price_personal_month"
    assert summary.scheduled_tier == "personal"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_summary_falls_back_to_a_lapsed_subscription(
    db_session, billing, fake_stripe, ctx, clock, subscribe
):
    customer_id = await subscribe(ctx, "price_pro_month")
    clock.advance(days=40)
    subscription_id = next(iter(fake_stripe.subscriptions))
    await fake_stripe.cancel_subscription(subscription_id)
    await billing.sync.resync_customer(db_session, customer_id)

    summary = await billing.queries.get_subscription_summary(db_session, ctx.organization.id)

    assert not summary.has_subscription
    assert summary.status == "canceled"
    assert summary.stripe_subscription_id == subscription_id
    assert not summary.money_back_guarantee.eligible
    assert summary.money_back_guarantee.days_remaining == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_summary_of_unknown_organization(db_session, billing):
    with pytest.raises(NotFoundException):
        await billing.queries.get_subscription_summary(db_session, uuid.uuid4())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_personal_workspace_flag(db_session, billing, make_organization):
    organization = await make_organization(name="Solo", is_personal=True)

    summary = await billing.queries.get_subscription_summary(db_session, organization.id)

    assert summary.is_personal_workspace


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "price_id, seat_limit, can_add_member, utilization",
    [
        (None, 1, False, 200.0),
        ("price_pro_month", 3, True, 66.7),
        ("price_enterprise_year", UNLIMITED_SEATS, True, 0.0),
    ],
)
async def test_seat_info(
    db_session, billing, ctx, subscribe, price_id, seat_limit, can_add_member, utilization
):
    if price_id:
        await subscribe(ctx, price_id)

    seats = await billing.queries.get_seat_info(db_session, ctx.organization.id)

    assert seats.current_seats == 2
    assert seats.seat_limit == seat_limit
    assert seats.is_unlimited == (seat_limit == UNLIMITED_SEATS)
    assert seats.can_add_member == can_add_member
    assert seats.utilization_percent == utilization


@pytest.mark.unit
@pytest.mark.asyncio
async def test_feature_checks_follow_the_current_tier(
    db_session, billing, ctx, subscribe, make_organization
):
    await subscribe(ctx, "price_enterprise_month")
    other = await make_organization(name="Hooli")

    enterprise = await billing.queries.has_feature(db_session, ctx.organization.id, "sso_saml")
    personal = await billing.queries.has_feature(db_session, other.id, "sso_saml")

    assert enterprise.has_feature
    assert enterprise.tier == "enterprise"
    assert not personal.has_feature
    assert personal.tier == "personal"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_prices(billing, fake_stripe):
    prices = await billing.queries.list_prices()

    assert [p.price_id for p in prices][:2] == ["price_personal_month", "price_personal_year"]
    assert len(prices) == 6
    pro = next(p for p in prices if p.price_id == "price_pro_month")
    assert pro.amount == 9900
    assert pro.product_name == "Pro Plan"
    assert pro.tier == "pro"

    fake_stripe.failures.add(("get_price", "price_enterprise_year"))
    prices = await billing.queries.list_prices()
    assert "price_enterprise_year" not in {p.price_id for p in prices}
    assert len(prices) == 5


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_all_subscriptions(db_session, billing, ctx, subscribe):
    customer_id = await subscribe(ctx, "price_pro_year")

    rows = await billing.queries.get_all_subscriptions(db_session, ctx.organization.id)

    assert len(rows) == 1
    assert rows[0].stripe_customer_id == customer_id
    assert rows[0].organization_id == ctx.organization.id
    assert rows[0].tier == "pro"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_audit_trail_lists_plan_changes(db_session, billing, ctx, subscribe):
    await subscribe(ctx, "price_pro_month")
    await billing.plans.change_plan(db_session, ctx, price_id="price_personal_month")

    trail = await billing.queries.get_audit_trail(db_session, ctx.organization.id)

    assert [event.action for event in trail] == ["plan_change"]
    assert trail[0].previous_tier == "pro"
    assert trail[0].new_tier == "personal"
    assert trail[0].effective == "scheduled"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_audit_trail_of_unknown_organization(db_session, billing):
    with pytest.raises(NotFoundException):
        await billing.queries.get_audit_trail(db_session, uuid.uuid4())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_complete_billing_data(
    db_session, billing, fake_stripe, ctx, make_organization, subscribe
):
    customer_id = await subscribe(ctx, "price_pro_month")
    other_ctx = build_context(await make_organization(name="Umbrella"))
    other_customer_id = await subscribe(other_ctx, "price_personal_month")

    own_charge = next(c for c in fake_stripe.charges if c["customer"] == customer_id)
    other_charge = next(c for c in fake_stripe.charges if c["customer"] == other_customer_id)
    refund = await fake_stripe.create_refund(charge=own_charge["id"])
    await fake_stripe.create_refund(charge=other_charge["id"])

    data = await billing.queries.get_complete_billing_data(db_session, ctx.organization.id)

    assert len(data.invoices) == 1
    invoice = data.invoices[0]
    assert invoice.amount_paid == 9900
    assert invoice.plan_name == "Pro Plan"
    assert invoice.billing_reason == "subscription_create"
    assert invoice.lines[0].amount == 9900

    assert [r.id for r in data.refunds] == [refund["id"]]
    assert data.refunds[0].invoice_id == invoice.id
    assert data.refunds[0].charge_id == own_charge["id"]

    assert len(data.subscriptions) == 1
    assert data.subscriptions[0].plan_name == "Pro Plan"
    assert data.subscriptions[0].amount == 9900

    descriptions = {entry.description for entry in data.activity}
    assert "Pro Plan created" in descriptions
    assert "$99.00 charged" in descriptions
    assert "$99.00 refunded" in descriptions
    assert "$20.00 charged" not in descriptions


@pytest.mark.unit
@pytest.mark.asyncio
async def test_complete_billing_data_without_billing(db_session, billing, ctx):
    data = await billing.queries.get_complete_billing_data(db_session, ctx.organization.id)

    assert data.invoices == []
    assert data.activity == []
