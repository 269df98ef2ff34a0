"""Webhook processor for Stripe billing events.

Relevant events do not carry state into the cache. They only name the customer
whose subscriptions are refetched and re-projected. Processed event IDs are
kept in a ledger so redeliveries skip the refetch.
"""

from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from planstate.core.logging import ContextualLogger, logger
from planstate.platform.billing.billing_service import BillingService, billing_service
from planstate.platform.billing.stripe_translation import event_customer_id

RELEVANT_EVENTS = frozenset(
    {
        "checkout.session.completed",
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "customer.subscription.paused",
        "customer.subscription.resumed",
        "customer.subscription.pending_update_applied",
        "customer.subscription.pending_update_expired",
        "customer.subscription.trial_will_end",
        "invoice.paid",
        "invoice.payment_failed",
        "invoice.payment_action_required",
        "invoice.upcoming",
        "invoice.marked_uncollectible",
        "invoice.payment_succeeded",
        "payment_intent.succeeded",
        "payment_intent.payment_failed",
        "payment_intent.canceled",
    }
)


class BillingWebhookProcessor:
    """Process Stripe webhook events for billing."""

    def __init__(self, db: AsyncSession, service: Optional[BillingService] = None):
        """Initialize webhook processor."""
        self.db = db
        self.service = service or billing_service
        self.repository = self.service.repository

    async def _create_context_logger(
        self, event: Dict[str, Any], customer_id: Optional[str]
    ) -> ContextualLogger:
        """Create contextual logger with organization context."""
        dimensions = {
            "auth_method": "stripe_webhook",
            "event_type": event.get("type"),
            "stripe_event_id": event.get("id"),
        }
        if customer_id:
            dimensions["stripe_customer_id"] = customer_id
            binding = await self.repository.get_binding_by_customer(self.db, customer_id)
            if binding is not None:
                dimensions["organization_id"] = str(binding.organization_id)
        return logger.with_context(**dimensions)

    async def process_event(self, event: Dict[str, Any]) -> bool:
        """Process a verified Stripe webhook event.

        Returns:
            True when the event triggered a resync, False when it was ignored
            (unlisted type, duplicate delivery, or no customer).

        Raises:
            Exception: Whatever the resync raised. The event is left out of the
                ledger so the redelivery retries it.
        """
        event_id = event.get("id")
        event_type = event.get("type")

        if event_type not in RELEVANT_EVENTS:
            logger.debug(f"Ignoring webhook event type: {event_type}")
            return False

        customer_id = event_customer_id(event)
        log = await self._create_context_logger(event, customer_id)

        if await self.repository.is_event_processed(self.db, event_id):
            log.info(f"Webhook event {event_id} already processed, skipping")
            return False

        if not customer_id:
            log.warning(f"Webhook event {event_type} carries no customer, skipping")
            return False

        try:
            log.info(f"Processing webhook event: {event_type}")
            await self.service.sync.resync_customer(self.db, customer_id)
        except Exception as e:
            log.error(f"Error handling {event_type}: {e}", exc_info=True)
            raise

        recorded = await self.repository.record_processed_event(
            self.db, event_id, event_type, customer_id
        )
        if recorded is None:
            log.info(f"Webhook event {event_id} was recorded by a concurrent delivery")
        return True
