"""Repository pattern for billing database operations.

This module handles all database interactions for billing,
providing a clean interface between the service layer and CRUD operations.
"""

from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from planstate import crud, schemas
from planstate.models import (
    BillingCustomer,
    Organization,
    StripeWebhookEvent,
    SubscriptionSnapshot,
    TrialUsage,
)
from planstate.schemas.billing import SubscriptionStatus

_QUALIFYING = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)


class BillingRepository:
    """Repository for all billing-related database operations."""

    # Organizations

    async def get_organization(
        self,
        db: AsyncSession,
        organization_id: UUID,
    ) -> Optional[Organization]:
        """Get organization by ID."""
        return await crud.organization.get(db, id=organization_id)

    # Customer bindings

    async def get_binding(
        self,
        db: AsyncSession,
        organization_id: UUID,
    ) -> Optional[BillingCustomer]:
        """Get the Stripe customer binding of an organization."""
        return await crud.billing_customer.get_by_organization(db, organization_id=organization_id)

    async def get_binding_by_customer(
        self,
        db: AsyncSession,
        stripe_customer_id: str,
    ) -> Optional[BillingCustomer]:
        """Get the binding of a Stripe customer."""
        return await crud.billing_customer.get_by_stripe_customer(
            db, stripe_customer_id=stripe_customer_id
        )

    async def upsert_binding(
        self,
        db: AsyncSession,
        organization_id: UUID,
        stripe_customer_id: str,
    ) -> tuple[BillingCustomer, bool]:
        """Create the binding or re-point it at a new customer.

        Returns:
            The binding and whether it changed.
        """
        existing = await self.get_binding(db, organization_id)
        if existing is None:
            binding = await crud.billing_customer.create(
                db,
                obj_in=schemas.BillingCustomerCreate(
                    organization_id=organization_id, stripe_customer_id=stripe_customer_id
                ),
            )
            return binding, True

        if existing.stripe_customer_id == stripe_customer_id:
            return existing, False

        binding = await crud.billing_customer.update(
            db, db_obj=existing, obj_in={"stripe_customer_id": stripe_customer_id}
        )
        return binding, True

    # Snapshots

    async def get_snapshots(
        self,
        db: AsyncSession,
        stripe_customer_id: str,
    ) -> list[SubscriptionSnapshot]:
        """Snapshot rows of a customer, most recently created subscription first."""
        return await crud.subscription_snapshot.get_by_customer(
            db, stripe_customer_id=stripe_customer_id
        )

    async def get_organization_snapshots(
        self,
        db: AsyncSession,
        organization_id: UUID,
    ) -> list[SubscriptionSnapshot]:
        """Snapshot rows of an organization, most recently updated first."""
        return await crud.subscription_snapshot.get_by_organization(
            db, organization_id=organization_id
        )

    async def get_current_snapshot(
        self,
        db: AsyncSession,
        stripe_customer_id: str,
    ) -> Optional[SubscriptionSnapshot]:
        """The most recently created active or trialing row of a customer."""
        for row in await self.get_snapshots(db, stripe_customer_id):
            if row.status in _QUALIFYING:
                return row
        return None

    async def get_pending_checkout(
        self,
        db: AsyncSession,
        stripe_customer_id: str,
    ) -> Optional[SubscriptionSnapshot]:
        """The ``none`` row that carries an unfinished checkout, if any."""
        for row in await self.get_snapshots(db, stripe_customer_id):
            if row.status == SubscriptionStatus.NONE.value and row.pending_checkout_session_id:
                return row
        return None

    async def replace_snapshots(
        self,
        db: AsyncSession,
        stripe_customer_id: str,
        rows: Sequence[schemas.SubscriptionSnapshotCreate],
    ) -> list[SubscriptionSnapshot]:
        """Replace every snapshot row of a customer."""
        return await crud.subscription_snapshot.replace_for_customer(
            db, stripe_customer_id=stripe_customer_id, rows=rows
        )

    async def record_pending_checkout(
        self,
        db: AsyncSession,
        organization_id: UUID,
        stripe_customer_id: str,
        checkout_session_id: str,
        price_id: str,
    ) -> SubscriptionSnapshot:
        """Remember an unfinished checkout on the customer's ``none`` row."""
        for row in await self.get_snapshots(db, stripe_customer_id):
            if row.status == SubscriptionStatus.NONE.value:
                return await crud.subscription_snapshot.update(
                    db,
                    db_obj=row,
                    obj_in={
                        "pending_checkout_session_id": checkout_session_id,
                        "pending_price_id": price_id,
                    },
                )

        return await crud.subscription_snapshot.create(
            db,
            obj_in=schemas.SubscriptionSnapshotCreate(
                organization_id=organization_id,
                stripe_customer_id=stripe_customer_id,
                status=SubscriptionStatus.NONE,
                pending_checkout_session_id=checkout_session_id,
                pending_price_id=price_id,
            ),
        )

    # Trials

    async def get_trial_usage(
        self,
        db: AsyncSession,
        organization_id: UUID,
    ) -> Optional[TrialUsage]:
        """Get the trial usage record of an organization."""
        return await crud.trial_usage.get_by_organization(db, organization_id=organization_id)

    async def record_trial_usage(
        self,
        db: AsyncSession,
        organization_id: UUID,
        trial_started_at: Optional[int],
        trial_ends_at: Optional[int],
    ) -> TrialUsage:
        """Mark the organization's trial as used."""
        return await crud.trial_usage.create(
            db,
            obj_in=schemas.TrialUsageCreate(
                organization_id=organization_id,
                has_used_trial=True,
                trial_started_at=trial_started_at,
                trial_ends_at=trial_ends_at,
            ),
        )

    # Audit

    async def record_audit(
        self,
        db: AsyncSession,
        event: schemas.BillingAuditEventCreate,
    ) -> None:
        """Append an audit record."""
        await crud.billing_audit_event.create(db, obj_in=event)

    async def get_audit_trail(
        self,
        db: AsyncSession,
        organization_id: UUID,
    ) -> list[schemas.BillingAuditEvent]:
        """Audit trail of an organization, newest first."""
        events = await crud.billing_audit_event.get_by_organization(
            db, organization_id=organization_id
        )
        return [schemas.BillingAuditEvent.model_validate(e, from_attributes=True) for e in events]

    # Webhook ledger

    async def is_event_processed(self, db: AsyncSession, event_id: str) -> bool:
        """Whether a webhook event was already synced."""
        return await crud.stripe_webhook_event.get_by_event_id(db, event_id=event_id) is not None

    async def record_processed_event(
        self,
        db: AsyncSession,
        event_id: str,
        event_type: str,
        stripe_customer_id: Optional[str],
    ) -> Optional[StripeWebhookEvent]:
        """Add a synced event to the ledger.

        Returns None when a concurrent delivery recorded it first.
        """
        try:
            return await crud.stripe_webhook_event.create(
                db,
                obj_in=schemas.StripeWebhookEventCreate(
                    event_id=event_id,
                    event_type=event_type,
                    stripe_customer_id=stripe_customer_id,
                ),
            )
        except IntegrityError:
            await db.rollback()
            return None
