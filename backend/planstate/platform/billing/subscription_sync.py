"""Resync of the local subscription snapshot from Stripe.

Every path that mutates Stripe, and every relevant webhook, ends in
``resync_customer``. It never applies event payloads: it refetches the full
subscription list and overwrites the customer's snapshot rows, so duplicate and
out-of-order deliveries converge on the same state.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.core.logging import logger
from planstate.integrations.stripe_client import StripeClient, require_stripe, stripe_client
from planstate.models import SubscriptionSnapshot
from planstate.platform.billing.billing_data_access import BillingRepository
from planstate.platform.billing.plan_logic import (
    PriceCatalog,
    get_catalog,
    get_seat_limit,
    interval_or_default,
)
from planstate.platform.billing.stripe_translation import (
    ParsedSubscription,
    parse_subscription,
    pick_authoritative,
    scheduled_price_of,
)
from planstate.schemas.billing import BillingInterval, SubscriptionStatus, Tier


class SubscriptionSync:
    """Projects a customer's Stripe subscriptions onto snapshot rows."""

    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        stripe: Optional[StripeClient] = None,
    ):
        """Initialize the sync."""
        self.repository = repository or BillingRepository()
        self.stripe = stripe if stripe is not None else stripe_client

    async def current_subscription(
        self, stripe_customer_id: str
    ) -> Optional[tuple[dict, ParsedSubscription]]:
        """The authoritative Stripe subscription of a customer, raw and parsed.

        Reads Stripe rather than the snapshot so that write paths act on the
        processor's state.
        """
        stripe = require_stripe(self.stripe)
        raw_subscriptions = await stripe.list_subscriptions(stripe_customer_id)
        parsed = {sub["id"]: parse_subscription(sub) for sub in raw_subscriptions}
        winner = pick_authoritative(list(parsed.values()))
        if winner is None:
            return None
        raw = next(sub for sub in raw_subscriptions if sub["id"] == winner.id)
        return raw, winner

    def _plan_of(
        self, subscription: ParsedSubscription, catalog: PriceCatalog
    ) -> tuple[Tier, BillingInterval]:
        plan = catalog.lookup(subscription.price_id)
        if plan is not None:
            return plan.tier, plan.interval

        logger.warning(
            f"Subscription {subscription.id} uses unrecognized price {subscription.price_id}, "
            "recording it as personal tier"
        )
        return Tier.PERSONAL, interval_or_default(subscription.price_interval)

    async def _scheduled_price(self, subscription: ParsedSubscription) -> Optional[str]:
        if not subscription.schedule_id or subscription.is_terminal:
            return None
        schedule = await require_stripe(self.stripe).get_subscription_schedule(
            subscription.schedule_id
        )
        return scheduled_price_of(schedule)

    async def _project(
        self,
        organization_id: UUID,
        stripe_customer_id: str,
        subscription: ParsedSubscription,
        catalog: PriceCatalog,
    ) -> schemas.SubscriptionSnapshotCreate:
        tier, interval = self._plan_of(subscription, catalog)
        return schemas.SubscriptionSnapshotCreate(
            organization_id=organization_id,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=subscription.id,
            stripe_price_id=subscription.price_id,
            status=SubscriptionStatus(subscription.status),
            tier=tier,
            billing_interval=interval,
            seat_limit=get_seat_limit(tier),
            subscription_created_at=subscription.created,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            cancel_at=subscription.cancel_at,
            trial_start=subscription.trial_start,
            trial_end=subscription.trial_end,
            payment_method_brand=subscription.payment_method_brand,
            payment_method_last4=subscription.payment_method_last4,
            scheduled_price_id=await self._scheduled_price(subscription),
            schedule_id=None if subscription.is_terminal else subscription.schedule_id,
        )

    async def resync_customer(
        self, db: AsyncSession, stripe_customer_id: str
    ) -> list[SubscriptionSnapshot]:
        """Refetch every subscription of a customer and replace its snapshot rows.

        An unfinished checkout stays recorded on a ``none`` row until the
        customer has an active or trialing subscription.

        Returns:
            The new snapshot rows. Empty when the customer is not bound to any
            organization.
        """
        stripe = require_stripe(self.stripe)
        log = logger.with_context(stripe_customer_id=stripe_customer_id)

        binding = await self.repository.get_binding_by_customer(db, stripe_customer_id)
        if binding is None:
            log.warning("No organization is bound to this Stripe customer, skipping sync")
            return []

        catalog = get_catalog()
        raw_subscriptions = await stripe.list_subscriptions(stripe_customer_id)
        parsed = [parse_subscription(sub) for sub in raw_subscriptions]

        qualifying = [s for s in parsed if s.is_qualifying]
        if len(qualifying) > 1:
            winner = pick_authoritative(parsed)
            log.warning(
                f"{len(qualifying)} active or trialing subscriptions found, "
                f"treating {winner.id} as current"
            )

        pending = await self.repository.get_pending_checkout(db, stripe_customer_id)

        rows = [
            await self._project(binding.organization_id, stripe_customer_id, sub, catalog)
            for sub in parsed
        ]

        keep_pending = pending is not None and not qualifying
        if not rows or keep_pending:
            rows.append(
                schemas.SubscriptionSnapshotCreate(
                    organization_id=binding.organization_id,
                    stripe_customer_id=stripe_customer_id,
                    status=SubscriptionStatus.NONE,
                    pending_checkout_session_id=(
                        pending.pending_checkout_session_id if keep_pending else None
                    ),
                    pending_price_id=pending.pending_price_id if keep_pending else None,
                )
            )

        snapshots = await self.repository.replace_snapshots(db, stripe_customer_id, rows)
        log.info(f"Synced {len(parsed)} subscription(s)")
        return snapshots
