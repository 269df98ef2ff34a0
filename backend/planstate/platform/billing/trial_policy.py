"""Free trial policy.

One trial per organization, ever. A trial is a trialing Stripe subscription
that pauses at trial end when no payment method was collected.
"""

import math
from typing import Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.api.context import ApiContext
from planstate.core import datetime_utils
from planstate.core.config import settings
from planstate.integrations.stripe_client import StripeClient, require_stripe, stripe_client
from planstate.platform.billing.billing_data_access import BillingRepository
from planstate.platform.billing.customer_binding import CustomerBindingStore
from planstate.platform.billing.plan_logic import TRIAL_TIERS, get_catalog
from planstate.platform.billing.stripe_translation import current_phase_start
from planstate.platform.billing.subscription_sync import SubscriptionSync
from planstate.schemas.billing import BillingInterval, ChangeEffect

SECONDS_PER_DAY = 24 * 60 * 60


class TrialPolicy:
    """Trial eligibility, trial start, and early conversion to paid billing."""

    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        bindings: Optional[CustomerBindingStore] = None,
        sync: Optional[SubscriptionSync] = None,
        stripe: Optional[StripeClient] = None,
    ):
        """Initialize the trial policy."""
        self.repository = repository or BillingRepository()
        self.stripe = stripe if stripe is not None else stripe_client
        self.bindings = bindings or CustomerBindingStore(self.repository, stripe=self.stripe)
        self.sync = sync or SubscriptionSync(self.repository, stripe=self.stripe)

    async def check_trial_eligibility(
        self, db: AsyncSession, organization_id: UUID
    ) -> schemas.TrialEligibility:
        """An organization is eligible until it has used its trial."""
        usage = await self.repository.get_trial_usage(db, organization_id)
        if usage is not None and usage.has_used_trial:
            return schemas.TrialEligibility(
                eligible=False,
                message="This organization has already used its free trial",
                trial_days=settings.TRIAL_PERIOD_DAYS,
            )
        return schemas.TrialEligibility(
            eligible=True,
            message=f"Eligible for a {settings.TRIAL_PERIOD_DAYS}-day free trial",
            trial_days=settings.TRIAL_PERIOD_DAYS,
        )

    async def start_trial(
        self, db: AsyncSession, ctx: ApiContext, price_id: str
    ) -> schemas.StartTrialResult:
        """Start the organization's free trial on ``price_id``.

        Raises:
            UnknownPriceError: If the price is not configured.
        """
        plan = get_catalog().resolve(price_id)
        if plan.tier not in TRIAL_TIERS:
            return schemas.StartTrialResult(
                success=False,
                message=f"Free trials are not available on the {plan.tier.value} plan",
            )

        eligibility = await self.check_trial_eligibility(db, ctx.organization.id)
        if not eligibility.eligible:
            return schemas.StartTrialResult(success=False, message=eligibility.message)

        customer_id = await self.bindings.ensure_customer(db, ctx)
        if await self.sync.current_subscription(customer_id) is not None:
            return schemas.StartTrialResult(
                success=False, message="Organization already has an active subscription"
            )

        subscription = await require_stripe(self.stripe).create_subscription(
            customer_id,
            price_id,
            trial_period_days=settings.TRIAL_PERIOD_DAYS,
            metadata={"organization_id": str(ctx.organization.id), "trial": "true"},
        )
        trial_start = datetime_utils.seconds_to_ms(subscription.get("trial_start"))
        trial_end = datetime_utils.seconds_to_ms(subscription.get("trial_end"))

        # Only recorded once Stripe accepted the trial
        await self.repository.record_trial_usage(db, ctx.organization.id, trial_start, trial_end)
        await self.sync.resync_customer(db, customer_id)
        await self.repository.record_audit(
            db,
            schemas.BillingAuditEventCreate(
                organization_id=ctx.organization.id,
                action="trial_started",
                new_tier=plan.tier,
                new_interval=plan.interval,
                was_trialing=True,
                details={"stripe_subscription_id": subscription["id"]},
            ),
        )
        ctx.logger.info(f"Started trial subscription {subscription['id']}")

        return schemas.StartTrialResult(
            success=True,
            message=f"Your {settings.TRIAL_PERIOD_DAYS}-day free trial has started",
            stripe_subscription_id=subscription["id"],
            trial_end=trial_end,
        )

    async def end_trial_and_start_paying(
        self, db: AsyncSession, ctx: ApiContext
    ) -> schemas.EndTrialResult:
        """End the trial now and start paid billing.

        Unused trial time is rounded up to whole days and added to the first
        paid period, which is one billing interval plus those bonus days.
        """
        customer_id = await self.bindings.get_binding(db, ctx.organization.id)
        if not customer_id:
            return schemas.EndTrialResult(success=False, message="No billing account found")

        current = await self.sync.current_subscription(customer_id)
        if current is None or current[1].status != "trialing":
            return schemas.EndTrialResult(success=False, message="No trial in progress")
        raw, subscription = current

        stripe = require_stripe(self.stripe)
        has_payment_method, _ = await stripe.detect_payment_method(raw)
        if not has_payment_method:
            return schemas.EndTrialResult(
                success=False,
                message="Add a payment method before ending your trial",
            )

        plan = get_catalog().resolve(subscription.price_id)

        now_ms = datetime_utils.utc_now_ms()
        now_s = datetime_utils.ms_to_seconds(now_ms)
        remaining_s = max(0, datetime_utils.ms_to_seconds(subscription.trial_end) - now_s)
        bonus_days = math.ceil(remaining_s / SECONDS_PER_DAY)

        interval = (
            relativedelta(years=1)
            if plan.interval == BillingInterval.YEAR
            else relativedelta(months=1)
        )
        first_period_end = (
            datetime_utils.ms_to_datetime(now_ms) + interval + relativedelta(days=bonus_days)
        )
        first_period_end_s = int(first_period_end.timestamp())

        if subscription.schedule_id:
            await stripe.release_subscription_schedule(subscription.schedule_id)

        schedule = await stripe.create_subscription_schedule(subscription.id)
        await stripe.update_subscription_schedule(
            schedule["id"],
            phases=[
                {
                    "items": [{"price": plan.price_id, "quantity": 1}],
                    "start_date": current_phase_start(schedule) or now_s,
                    "trial_end": now_s,
                    "end_date": first_period_end_s,
                }
            ],
            end_behavior="release",
            proration_behavior="none",
        )

        await self.sync.resync_customer(db, customer_id)
        await self.repository.record_audit(
            db,
            schemas.BillingAuditEventCreate(
                organization_id=ctx.organization.id,
                action="trial_ended",
                previous_tier=plan.tier,
                previous_interval=plan.interval,
                new_tier=plan.tier,
                new_interval=plan.interval,
                was_trialing=True,
                effective=ChangeEffect.IMMEDIATE,
                details={"bonus_days": bonus_days, "schedule_id": schedule["id"]},
            ),
        )
        ctx.logger.info(
            f"Ended trial of {subscription.id} with {bonus_days} bonus day(s), "
            f"first period ends at {first_period_end.isoformat()}"
        )

        return schemas.EndTrialResult(
            success=True,
            message=(
                f"Your paid plan has started. {bonus_days} unused trial day(s) were added "
                "to your first billing period"
            ),
            bonus_days=bonus_days,
            first_period_end=datetime_utils.seconds_to_ms(first_period_end_s),
        )
