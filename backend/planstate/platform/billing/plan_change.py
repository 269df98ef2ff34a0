"""Plan change orchestration.

Turns a requested price into Stripe calls: immediate price swaps for upgrades
and trials, two-phase subscription schedules for downgrades of paid
subscriptions. There are no local locks; Stripe serializes writes to a
subscription and every branch resyncs before returning.
"""

from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.api.context import ApiContext
from planstate.core.datetime_utils import ms_to_seconds
from planstate.core.exceptions import ExternalServiceError, NoActiveSubscriptionError
from planstate.integrations.stripe_client import StripeClient, require_stripe, stripe_client
from planstate.platform.billing.billing_data_access import BillingRepository
from planstate.platform.billing.customer_binding import CustomerBindingStore
from planstate.platform.billing.plan_logic import (
    PlanChangeAction,
    PlanChangeContext,
    PricePlan,
    analyze_plan_change,
    get_catalog,
)
from planstate.platform.billing.stripe_translation import (
    ParsedSubscription,
    current_phase_start,
)
from planstate.platform.billing.subscription_sync import SubscriptionSync
from planstate.schemas.billing import ChangeEffect


class PlanChangeOrchestrator:
    """Applies plan changes, scheduled downgrades and scheduled cancellations."""

    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        bindings: Optional[CustomerBindingStore] = None,
        sync: Optional[SubscriptionSync] = None,
        stripe: Optional[StripeClient] = None,
    ):
        """Initialize the orchestrator."""
        self.repository = repository or BillingRepository()
        self.stripe = stripe if stripe is not None else stripe_client
        self.bindings = bindings or CustomerBindingStore(self.repository, stripe=self.stripe)
        self.sync = sync or SubscriptionSync(self.repository, stripe=self.stripe)

    async def _current(
        self, db: AsyncSession, ctx: ApiContext
    ) -> tuple[str, dict, ParsedSubscription]:
        """Customer ID and authoritative subscription of the organization.

        Raises:
            NoActiveSubscriptionError: If there is no active or trialing subscription.
        """
        customer_id = await self.bindings.get_binding(db, ctx.organization.id)
        if not customer_id:
            raise NoActiveSubscriptionError("No billing account found for this organization")

        current = await self.sync.current_subscription(customer_id)
        if current is None:
            raise NoActiveSubscriptionError()

        raw, parsed = current
        return customer_id, raw, parsed

    async def _release_schedule(self, ctx: ApiContext, subscription: ParsedSubscription) -> None:
        if subscription.schedule_id:
            await require_stripe(self.stripe).release_subscription_schedule(
                subscription.schedule_id
            )
            ctx.logger.info(f"Released subscription schedule {subscription.schedule_id}")

    async def _audit(
        self,
        db: AsyncSession,
        ctx: ApiContext,
        action: str,
        *,
        previous: Optional[PricePlan] = None,
        new: Optional[PricePlan] = None,
        was_trialing: bool = False,
        effective: ChangeEffect = ChangeEffect.IMMEDIATE,
        effective_at: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.repository.record_audit(
            db,
            schemas.BillingAuditEventCreate(
                organization_id=ctx.organization.id,
                action=action,
                previous_tier=previous.tier if previous else None,
                previous_interval=previous.interval if previous else None,
                new_tier=new.tier if new else None,
                new_interval=new.interval if new else None,
                was_trialing=was_trialing,
                effective=effective,
                effective_at=effective_at,
                details=details,
            ),
        )

    async def _schedule_downgrade(
        self,
        ctx: ApiContext,
        subscription: ParsedSubscription,
        current: PricePlan,
        target: PricePlan,
    ) -> str:
        """Keep the current price until period end, then switch. Returns the schedule ID."""
        stripe = require_stripe(self.stripe)

        await self._release_schedule(ctx, subscription)
        schedule = await stripe.create_subscription_schedule(subscription.id)

        period_start = ms_to_seconds(subscription.current_period_start)
        period_end = ms_to_seconds(subscription.current_period_end)
        phases = [
            {
                "items": [{"price": current.price_id, "quantity": 1}],
                "start_date": current_phase_start(schedule) or period_start,
                "end_date": period_end,
            },
            {
                "items": [{"price": target.price_id, "quantity": 1}],
                "iterations": 1,
            },
        ]
        await stripe.update_subscription_schedule(
            schedule["id"], phases=phases, end_behavior="release"
        )
        ctx.logger.info(
            f"Scheduled change from {current.price_id} to {target.price_id} "
            f"on schedule {schedule['id']}"
        )
        return schedule["id"]

    async def change_plan(
        self,
        db: AsyncSession,
        ctx: ApiContext,
        price_id: str,
        success_url: Optional[str] = None,
    ) -> schemas.PlanChangeResult:
        """Move the organization's subscription to ``price_id``.

        Raises:
            UnknownPriceError: If either the target or the current price is not configured.
            NoActiveSubscriptionError: If there is no active or trialing subscription.
            PaymentFailedError: If the prorated upgrade invoice could not be paid.
                The subscription keeps its current price and any pending downgrade.
        """
        catalog = get_catalog()
        target = catalog.resolve(price_id)

        customer_id, raw, subscription = await self._current(db, ctx)
        current = catalog.resolve(subscription.price_id)
        is_trialing = subscription.status == "trialing"

        decision = analyze_plan_change(
            PlanChangeContext(current=current, target=target, is_trialing=is_trialing)
        )
        ctx.logger.info(
            f"Plan change {current.price_id} -> {target.price_id}: "
            f"{decision.change_type.value}, action {decision.action.value}"
        )

        result_fields = dict(
            previous_tier=current.tier,
            previous_interval=current.interval,
            new_tier=target.tier,
            new_interval=target.interval,
        )

        if decision.action == PlanChangeAction.NO_OP:
            return schemas.PlanChangeResult(
                success=True, message=decision.message, effect=ChangeEffect.NONE, **result_fields
            )

        if decision.action == PlanChangeAction.REJECT:
            return schemas.PlanChangeResult(
                success=False, message=decision.message, effect=ChangeEffect.NONE, **result_fields
            )

        if decision.action == PlanChangeAction.SCHEDULED_DOWNGRADE:
            schedule_id = await self._schedule_downgrade(ctx, subscription, current, target)
            effect = ChangeEffect.SCHEDULED
            effective_at = subscription.current_period_end
            details: Dict[str, Any] = {"schedule_id": schedule_id}
        else:
            try:
                await require_stripe(self.stripe).update_subscription_price(
                    raw,
                    target.price_id,
                    proration_behavior=decision.proration_behavior,
                    payment_behavior=decision.payment_behavior,
                )
            except ExternalServiceError as e:
                ctx.logger.warning(f"Price change to {target.price_id} failed: {e}")
                await self.sync.resync_customer(db, customer_id)
                raise
            # A pending downgrade is dropped only once the new price is in place
            await self._release_schedule(ctx, subscription)
            effect = ChangeEffect.IMMEDIATE
            effective_at = None
            details = {"action": decision.action.value}

        if success_url:
            details["success_url"] = success_url

        await self.sync.resync_customer(db, customer_id)
        await self._audit(
            db,
            ctx,
            "plan_change",
            previous=current,
            new=target,
            was_trialing=is_trialing,
            effective=effect,
            effective_at=effective_at,
            details=details,
        )

        return schemas.PlanChangeResult(
            success=True,
            message=decision.message,
            effect=effect,
            effective_at=effective_at,
            **result_fields,
        )

    async def cancel_scheduled_downgrade(
        self, db: AsyncSession, ctx: ApiContext
    ) -> schemas.BillingDecision:
        """Release the schedule of a pending downgrade, keeping the current plan."""
        customer_id, _, subscription = await self._current(db, ctx)
        if not subscription.schedule_id:
            return schemas.BillingDecision(
                success=False, message="No scheduled plan change to cancel"
            )

        await self._release_schedule(ctx, subscription)
        await self.sync.resync_customer(db, customer_id)

        current = get_catalog().lookup(subscription.price_id)
        await self._audit(
            db,
            ctx,
            "scheduled_change_canceled",
            previous=current,
            new=current,
            was_trialing=subscription.status == "trialing",
            details={"schedule_id": subscription.schedule_id},
        )
        return schemas.BillingDecision(
            success=True, message="Scheduled plan change canceled. Your current plan continues"
        )

    async def cancel_subscription(
        self, db: AsyncSession, ctx: ApiContext
    ) -> schemas.BillingDecision:
        """Schedule cancellation at the end of the current period."""
        customer_id, _, subscription = await self._current(db, ctx)
        if subscription.cancel_at_period_end:
            return schemas.BillingDecision(
                success=False, message="Subscription is already scheduled to cancel"
            )

        await require_stripe(self.stripe).set_cancel_at_period_end(subscription.id, True)
        await self.sync.resync_customer(db, customer_id)

        current = get_catalog().lookup(subscription.price_id)
        await self._audit(
            db,
            ctx,
            "cancellation_scheduled",
            previous=current,
            was_trialing=subscription.status == "trialing",
            effective=ChangeEffect.SCHEDULED,
            effective_at=subscription.current_period_end,
        )
        return schemas.BillingDecision(
            success=True,
            message="Subscription will be canceled at the end of the current billing period",
        )

    async def resume_subscription(
        self, db: AsyncSession, ctx: ApiContext
    ) -> schemas.BillingDecision:
        """Undo a scheduled cancellation, whichever way it was scheduled."""
        customer_id, raw, subscription = await self._current(db, ctx)
        stripe = require_stripe(self.stripe)

        if raw.get("cancel_at_period_end"):
            await stripe.set_cancel_at_period_end(subscription.id, False)
        elif raw.get("cancel_at"):
            await stripe.clear_cancel_at(subscription.id)
        else:
            return schemas.BillingDecision(
                success=False, message="Subscription is not scheduled to cancel"
            )

        await self.sync.resync_customer(db, customer_id)

        current = get_catalog().lookup(subscription.price_id)
        await self._audit(
            db,
            ctx,
            "cancellation_resumed",
            previous=current,
            new=current,
            was_trialing=subscription.status == "trialing",
        )
        return schemas.BillingDecision(success=True, message="Subscription reactivated")
