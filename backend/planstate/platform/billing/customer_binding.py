"""Binding between organizations and Stripe customers.

The binding lives in two places: the local ``billing_customer`` table and the
organization's record in the WorkOS directory. The local row is written first
so that a directory outage never loses a freshly created Stripe customer.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.api.context import ApiContext
from planstate.core.exceptions import ConfigurationError
from planstate.core.logging import logger
from planstate.integrations.stripe_client import StripeClient, require_stripe, stripe_client
from planstate.integrations.workos_client import WorkOSClient, workos_client
from planstate.platform.billing.billing_data_access import BillingRepository


class CustomerBindingStore:
    """Reads and writes the organization -> Stripe customer binding."""

    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        stripe: Optional[StripeClient] = None,
        directory: Optional[WorkOSClient] = None,
    ):
        """Initialize the binding store."""
        self.repository = repository or BillingRepository()
        self.stripe = stripe if stripe is not None else stripe_client
        self.directory = directory if directory is not None else workos_client

    async def get_binding(self, db: AsyncSession, organization_id: UUID) -> Optional[str]:
        """Stripe customer ID of an organization, or None when it was never bound."""
        binding = await self.repository.get_binding(db, organization_id)
        return binding.stripe_customer_id if binding else None

    async def upsert_binding(
        self,
        db: AsyncSession,
        organization: schemas.Organization,
        stripe_customer_id: str,
    ) -> None:
        """Bind an organization to a Stripe customer.

        A changed binding is pushed to the directory. Organizations that are
        not mirrored from the directory (no ``external_id``) are only bound
        locally.

        Raises:
            ConfigurationError: If the directory client is not configured.
            ExternalServiceError: If the directory rejects the update. The local
                binding is kept.
        """
        if self.directory is None:
            raise ConfigurationError("WorkOS directory is not configured")

        _, changed = await self.repository.upsert_binding(
            db, organization.id, stripe_customer_id
        )
        if not changed:
            return

        if not organization.external_id:
            logger.warning(
                f"Organization {organization.id} has no directory ID, "
                f"Stripe customer {stripe_customer_id} bound locally only"
            )
            return

        await self.directory.set_stripe_customer(organization.external_id, stripe_customer_id)

    async def ensure_customer(
        self,
        db: AsyncSession,
        ctx: ApiContext,
        email: Optional[str] = None,
    ) -> str:
        """Return the organization's Stripe customer, creating and binding one if needed."""
        existing = await self.get_binding(db, ctx.organization.id)
        if existing:
            return existing

        metadata = {"organization_id": str(ctx.organization.id)}
        if ctx.organization.external_id:
            metadata["workos_organization_id"] = ctx.organization.external_id

        customer = await require_stripe(self.stripe).create_customer(
            email=email or ctx.organization.billing_email,
            name=ctx.organization.name,
            metadata=metadata,
        )
        ctx.logger.info(f"Created Stripe customer {customer['id']}")

        await self.upsert_binding(db, ctx.organization, customer["id"])
        return customer["id"]
