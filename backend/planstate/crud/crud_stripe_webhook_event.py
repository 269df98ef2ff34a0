"""CRUD operations for processed webhook events."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.crud._base import CRUDBase
from planstate.models import StripeWebhookEvent


class CRUDStripeWebhookEvent(
    CRUDBase[
        StripeWebhookEvent, schemas.StripeWebhookEventCreate, schemas.StripeWebhookEventCreate
    ]
):
    """CRUD operations for processed webhook events."""

    async def get_by_event_id(
        self, db: AsyncSession, *, event_id: str
    ) -> Optional[StripeWebhookEvent]:
        """Get a processed event by its Stripe event ID."""
        result = await db.execute(
            select(StripeWebhookEvent).where(StripeWebhookEvent.event_id == event_id)
        )
        return result.scalar_one_or_none()


stripe_webhook_event = CRUDStripeWebhookEvent(StripeWebhookEvent)
