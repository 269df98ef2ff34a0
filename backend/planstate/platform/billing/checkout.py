"""Checkout and billing portal sessions."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.api.context import ApiContext
from planstate.core import datetime_utils
from planstate.core.config import settings
from planstate.core.exceptions import InvalidStateError, NotFoundException
from planstate.integrations.stripe_client import StripeClient, require_stripe, stripe_client
from planstate.platform.billing.billing_data_access import BillingRepository
from planstate.platform.billing.customer_binding import CustomerBindingStore
from planstate.platform.billing.plan_logic import get_catalog
from planstate.platform.billing.subscription_sync import SubscriptionSync
from planstate.schemas.billing import BillingInterval, Tier

# Price offered when an abandoned checkout left no price behind
DEFAULT_RESUME_PLAN = (Tier.PRO, BillingInterval.MONTH)


class CheckoutService:
    """First-time subscription setup through Stripe Checkout."""

    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        bindings: Optional[CustomerBindingStore] = None,
        sync: Optional[SubscriptionSync] = None,
        stripe: Optional[StripeClient] = None,
    ):
        """Initialize the checkout service."""
        self.repository = repository or BillingRepository()
        self.stripe = stripe if stripe is not None else stripe_client
        self.bindings = bindings or CustomerBindingStore(self.repository, stripe=self.stripe)
        self.sync = sync or SubscriptionSync(self.repository, stripe=self.stripe)

    def _expires_at(self) -> int:
        now_s = datetime_utils.ms_to_seconds(datetime_utils.utc_now_ms())
        return now_s + settings.CHECKOUT_SESSION_TTL_HOURS * 3600

    async def _open_session(
        self,
        db: AsyncSession,
        ctx: ApiContext,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> dict:
        session = await require_stripe(self.stripe).create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            expires_at=self._expires_at(),
            metadata={"organization_id": str(ctx.organization.id)},
        )
        await self.repository.record_pending_checkout(
            db, ctx.organization.id, customer_id, session["id"], price_id
        )
        ctx.logger.info(f"Created checkout session {session['id']} for price {price_id}")
        return session

    async def _ensure_unsubscribed(self, customer_id: str) -> None:
        if await self.sync.current_subscription(customer_id) is not None:
            raise InvalidStateError(
                "Organization already has an active subscription. Change the plan instead"
            )

    async def create_checkout_session(
        self,
        db: AsyncSession,
        ctx: ApiContext,
        price_id: str,
        success_url: str,
        cancel_url: str,
        email: Optional[str] = None,
    ) -> schemas.CheckoutSessionResponse:
        """Start a checkout for an organization's first subscription.

        Creates and binds the Stripe customer when the organization has none.

        Raises:
            UnknownPriceError: If the price is not configured.
            InvalidStateError: If the organization already has an active or
                trialing subscription; plan changes go through ``change_plan``.
        """
        get_catalog().resolve(price_id)

        customer_id = await self.bindings.ensure_customer(db, ctx, email=email)
        await self._ensure_unsubscribed(customer_id)

        session = await self._open_session(
            db, ctx, customer_id, price_id, success_url, cancel_url
        )
        return schemas.CheckoutSessionResponse(
            checkout_url=session["url"], checkout_session_id=session["id"]
        )

    async def resume_checkout(
        self,
        db: AsyncSession,
        ctx: ApiContext,
        success_url: str,
        cancel_url: str,
    ) -> schemas.ResumeCheckoutResponse:
        """Return a usable checkout for an organization whose setup never completed.

        An open session is handed back as-is. Expired, completed or vanished
        sessions are replaced with a new one for the same price.

        Raises:
            NotFoundException: If the organization has no billing account.
            InvalidStateError: If a subscription is already active or trialing.
        """
        customer_id = await self.bindings.get_binding(db, ctx.organization.id)
        if not customer_id:
            raise NotFoundException("No billing account found")
        await self._ensure_unsubscribed(customer_id)

        pending = await self.repository.get_pending_checkout(db, customer_id)
        if pending is not None:
            session = await require_stripe(self.stripe).get_checkout_session(
                pending.pending_checkout_session_id
            )
            if session is not None and session.get("status") == "open" and session.get("url"):
                return schemas.ResumeCheckoutResponse(
                    checkout_url=session["url"],
                    checkout_session_id=session["id"],
                    is_new_session=False,
                )
            ctx.logger.info(
                f"Checkout session {pending.pending_checkout_session_id} is no longer open, "
                "creating a new one"
            )

        price_id = pending.pending_price_id if pending and pending.pending_price_id else None
        if price_id is None:
            price_id = get_catalog().price_for(*DEFAULT_RESUME_PLAN)

        session = await self._open_session(
            db, ctx, customer_id, price_id, success_url, cancel_url
        )
        return schemas.ResumeCheckoutResponse(
            checkout_url=session["url"],
            checkout_session_id=session["id"],
            is_new_session=True,
        )

    async def sync_after_checkout(
        self, db: AsyncSession, ctx: ApiContext
    ) -> schemas.BillingDecision:
        """Resync right after the customer returns from Checkout."""
        customer_id = await self.bindings.get_binding(db, ctx.organization.id)
        if not customer_id:
            return schemas.BillingDecision(success=False, message="No billing account found")

        await self.sync.resync_customer(db, customer_id)
        return schemas.BillingDecision(success=True, message="Billing data synced")

    async def create_portal_session(
        self, db: AsyncSession, ctx: ApiContext, return_url: str
    ) -> schemas.CustomerPortalResponse:
        """Open the Stripe billing portal for the organization's customer."""
        customer_id = await self.bindings.get_binding(db, ctx.organization.id)
        if not customer_id:
            raise NotFoundException("No billing account found")

        session = await require_stripe(self.stripe).create_portal_session(customer_id, return_url)
        return schemas.CustomerPortalResponse(portal_url=session["url"])
