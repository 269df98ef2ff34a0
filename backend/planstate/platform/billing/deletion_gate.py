"""Guard that keeps organizations with live billing from being deleted."""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.core.exceptions import ExternalServiceError
from planstate.core.logging import logger
from planstate.integrations.stripe_client import StripeClient, require_stripe, stripe_client
from planstate.platform.billing.billing_data_access import BillingRepository
from planstate.platform.billing.stripe_translation import parse_subscription
from planstate.platform.billing.subscription_sync import SubscriptionSync
from planstate.schemas.billing import SubscriptionStatus

_QUALIFYING = {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value}


class DeletionGate:
    """Decides whether an organization can be destroyed without orphaning billing."""

    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        sync: Optional[SubscriptionSync] = None,
        stripe: Optional[StripeClient] = None,
    ):
        """Initialize the deletion gate."""
        self.repository = repository or BillingRepository()
        self.stripe = stripe if stripe is not None else stripe_client
        self.sync = sync or SubscriptionSync(self.repository, stripe=self.stripe)

    async def can_delete(self, db: AsyncSession, organization_id: UUID) -> schemas.DeletionCheck:
        """Read-only check against the snapshot cache."""
        binding = await self.repository.get_binding(db, organization_id)
        if binding is None:
            return schemas.DeletionCheck(can_delete=True, reason="No billing account")

        rows = await self.repository.get_snapshots(db, binding.stripe_customer_id)
        if not rows:
            return schemas.DeletionCheck(can_delete=True, reason="No subscription")

        current = next((row for row in rows if row.status in _QUALIFYING), None)
        if current is None:
            pending = any(
                row.status == SubscriptionStatus.NONE and row.pending_checkout_session_id
                for row in rows
            )
            if pending:
                return schemas.DeletionCheck(
                    can_delete=True, reason="Checkout was started but never completed"
                )
            status = SubscriptionStatus(rows[0].status)
            return schemas.DeletionCheck(
                can_delete=True,
                reason=f"Subscription is {status.value}",
                status=status,
            )

        status = SubscriptionStatus(current.status)
        if current.cancel_at_period_end:
            cancels_at = current.cancel_at or current.current_period_end
            return schemas.DeletionCheck(
                can_delete=False,
                reason=(
                    "Subscription is scheduled to cancel. The organization can be deleted "
                    "once the current billing period ends"
                ),
                status=status,
                cancels_at=cancels_at,
            )

        return schemas.DeletionCheck(
            can_delete=False,
            reason=f"Subscription is {status.value}. Cancel it before deleting the organization",
            status=status,
            requires_cancellation=True,
        )

    async def cancel_all_subscriptions(
        self, db: AsyncSession, organization_id: UUID
    ) -> schemas.CancelAllResult:
        """Cancel every non-terminal Stripe subscription of the organization now.

        Used as a safety net right before deleting an organization. Failures
        are collected and the remaining subscriptions are still canceled.
        """
        binding = await self.repository.get_binding(db, organization_id)
        if binding is None:
            return schemas.CancelAllResult(success=True, message="No billing account")

        stripe = require_stripe(self.stripe)
        customer_id = binding.stripe_customer_id
        log = logger.with_context(
            organization_id=str(organization_id), stripe_customer_id=customer_id
        )

        canceled: list[str] = []
        errors: list[str] = []
        for raw in await stripe.list_subscriptions(customer_id):
            subscription = parse_subscription(raw)
            if subscription.is_terminal:
                continue
            try:
                await stripe.cancel_subscription(subscription.id, prorate=True)
                canceled.append(subscription.id)
            except ExternalServiceError as e:
                log.error(f"Failed to cancel subscription {subscription.id}: {e}")
                errors.append(f"Subscription {subscription.id}: {e}")

        await self.sync.resync_customer(db, customer_id)
        log.info(f"Canceled {len(canceled)} subscription(s), {len(errors)} failure(s)")

        return schemas.CancelAllResult(
            success=not errors,
            message=(
                f"Canceled {len(canceled)} subscription(s)"
                if not errors
                else f"Canceled {len(canceled)} subscription(s), {len(errors)} failed"
            ),
            canceled_subscription_ids=canceled,
            errors=errors,
        )
