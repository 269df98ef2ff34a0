"""CRUD operations for subscription snapshots."""

from typing import Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.crud._base import CRUDBase
from planstate.models import SubscriptionSnapshot


class CRUDSubscriptionSnapshot(
    CRUDBase[
        SubscriptionSnapshot,
        schemas.SubscriptionSnapshotCreate,
        schemas.SubscriptionSnapshotCreate,
    ]
):
    """CRUD operations for subscription snapshots."""

    async def get_by_customer(
        self, db: AsyncSession, *, stripe_customer_id: str
    ) -> list[SubscriptionSnapshot]:
        """All snapshot rows of a customer, most recently created subscription first."""
        query = (
            select(SubscriptionSnapshot)
            .where(SubscriptionSnapshot.stripe_customer_id == stripe_customer_id)
            .order_by(SubscriptionSnapshot.subscription_created_at.desc())
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_by_organization(
        self, db: AsyncSession, *, organization_id: UUID
    ) -> list[SubscriptionSnapshot]:
        """All snapshot rows of an organization, most recently updated first."""
        query = (
            select(SubscriptionSnapshot)
            .where(SubscriptionSnapshot.organization_id == organization_id)
            .order_by(SubscriptionSnapshot.modified_at.desc())
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def replace_for_customer(
        self,
        db: AsyncSession,
        *,
        stripe_customer_id: str,
        rows: Sequence[schemas.SubscriptionSnapshotCreate],
    ) -> list[SubscriptionSnapshot]:
        """Delete every row of the customer and insert ``rows`` in one transaction.

        Args:
            db: Database session
            stripe_customer_id: Stripe customer ID whose rows are replaced
            rows: The new projection

        Returns:
            The inserted rows
        """
        await db.execute(
            delete(SubscriptionSnapshot).where(
                SubscriptionSnapshot.stripe_customer_id == stripe_customer_id
            )
        )
        db_objs = [SubscriptionSnapshot(**row.model_dump()) for row in rows]
        db.add_all(db_objs)
        await db.commit()
        return db_objs


subscription_snapshot = CRUDSubscriptionSnapshot(SubscriptionSnapshot)
