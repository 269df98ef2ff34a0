"""CRUD operations for billing customer bindings."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.crud._base import CRUDBase
from planstate.models import BillingCustomer


class CRUDBillingCustomer(
    CRUDBase[BillingCustomer, schemas.BillingCustomerCreate, schemas.BillingCustomerCreate]
):
    """CRUD operations for billing customer bindings."""

    async def get_by_organization(
        self, db: AsyncSession, *, organization_id: UUID
    ) -> Optional[BillingCustomer]:
        """Get binding by organization ID.

        Args:
            db: Database session
            organization_id: Organization ID

        Returns:
            BillingCustomer or None
        """
        query = select(BillingCustomer).where(BillingCustomer.organization_id == organization_id)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_stripe_customer(
        self, db: AsyncSession, *, stripe_customer_id: str
    ) -> Optional[BillingCustomer]:
        """Get binding by Stripe customer ID.

        Args:
            db: Database session
            stripe_customer_id: Stripe customer ID

        Returns:
            BillingCustomer or None
        """
        query = select(BillingCustomer).where(
            BillingCustomer.stripe_customer_id == stripe_customer_id
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()


billing_customer = CRUDBillingCustomer(BillingCustomer)
