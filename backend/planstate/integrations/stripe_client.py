"""Stripe API client for billing operations.

This module provides a clean interface to Stripe API,
handling all direct Stripe interactions without business logic.
Every call returns the Stripe object converted to a plain dict; parsing it is
the job of ``planstate.platform.billing.stripe_translation``.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

import stripe

from planstate.core.config import settings
from planstate.core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    PaymentFailedError,
    WebhookSignatureError,
)

PAGE_SIZE = 100


def _to_dict(obj: stripe.StripeObject) -> Dict[str, Any]:
    return obj.to_dict(recursive=True)


class StripeClient:
    """Client for Stripe API operations."""

    def __init__(self):
        """Initialize Stripe client."""
        if not settings.STRIPE_ENABLED:
            raise ValueError("Stripe is not enabled in settings")

        stripe.api_key = settings.STRIPE_SECRET_KEY

    def _sanitize_text(self, text: str) -> str:
        """Sanitize text for Stripe API (ASCII-only)."""
        if not text:
            return text
        return text.encode("ascii", "replace").decode("ascii")

    def _clean_metadata(self, metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
        """Clean metadata values for Stripe."""
        if not metadata:
            return {}

        return {
            self._sanitize_text(str(key)): self._sanitize_text(str(value))
            for key, value in metadata.items()
        }

    async def _list_all(
        self, list_fn: Callable[..., Awaitable[Any]], **params: Any
    ) -> List[Dict[str, Any]]:
        """Walk every page of a Stripe list endpoint."""
        params.setdefault("limit", PAGE_SIZE)
        items: List[Dict[str, Any]] = []
        while True:
            page = await list_fn(**params)
            data = [_to_dict(item) for item in page.data]
            items.extend(data)
            if not page.has_more or not data:
                return items
            params["starting_after"] = data[-1]["id"]

    # Customer operations

    async def create_customer(
        self,
        email: Optional[str],
        name: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a Stripe customer."""
        try:
            params: Dict[str, Any] = {
                "name": self._sanitize_text(name),
                "metadata": self._clean_metadata(metadata),
            }
            if email:
                params["email"] = self._sanitize_text(email)

            return _to_dict(await stripe.Customer.create_async(**params))
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to create customer: {str(e)}",
            ) from e

    async def get_customer(self, customer_id: str) -> Dict[str, Any]:
        """Retrieve a Stripe customer."""
        try:
            return _to_dict(await stripe.Customer.retrieve_async(customer_id))
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to retrieve customer: {str(e)}",
            ) from e

    # Subscription operations

    async def list_subscriptions(
        self, customer_id: str, status: str = "all"
    ) -> List[Dict[str, Any]]:
        """List every subscription of a customer, payment method expanded."""
        try:
            return await self._list_all(
                stripe.Subscription.list_async,
                customer=customer_id,
                status=status,
                expand=["data.default_payment_method"],
            )
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to list subscriptions: {str(e)}",
            ) from e

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        *,
        trial_period_days: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a subscription directly (no checkout).

        With ``trial_period_days`` the subscription starts trialing and pauses at
        trial end when no payment method was collected.
        """
        try:
            params: Dict[str, Any] = {
                "customer": customer_id,
                "items": [{"price": price_id}],
                "metadata": self._clean_metadata(metadata),
            }
            if trial_period_days:
                params["trial_period_days"] = trial_period_days
                params["trial_settings"] = {
                    "end_behavior": {"missing_payment_method": "pause"},
                }
                params["payment_settings"] = {"save_default_payment_method": "on_subscription"}

            return _to_dict(await stripe.Subscription.create_async(**params))
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to create subscription: {str(e)}",
            ) from e

    async def update_subscription_price(
        self,
        subscription: Dict[str, Any],
        price_id: str,
        *,
        proration_behavior: str,
        payment_behavior: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Swap the price of a subscription's single item.

        Raises:
            PaymentFailedError: If an immediate invoice could not be paid. Stripe
                leaves the subscription unchanged in that case.
        """
        items_data = (subscription.get("items") or {}).get("data") or []
        if not items_data:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Subscription {subscription['id']} has no items",
            )

        params: Dict[str, Any] = {
            "items": [{"id": items_data[0]["id"], "price": price_id}],
            "proration_behavior": proration_behavior,
        }
        if payment_behavior:
            params["payment_behavior"] = payment_behavior

        try:
            return _to_dict(await stripe.Subscription.modify_async(subscription["id"], **params))
        except stripe.CardError as e:
            raise PaymentFailedError(
                f"Payment for the upgrade failed: {e.user_message or e}"
            ) from e
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to update subscription: {str(e)}",
            ) from e

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel_at_period_end: bool
    ) -> Dict[str, Any]:
        """Schedule or unschedule cancellation at the end of the current period."""
        try:
            result = await stripe.Subscription.modify_async(
                subscription_id, cancel_at_period_end=cancel_at_period_end
            )
            return _to_dict(result)
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to update subscription cancellation: {str(e)}",
            ) from e

    async def clear_cancel_at(self, subscription_id: str) -> Dict[str, Any]:
        """Remove an explicit ``cancel_at`` date set through the billing portal."""
        try:
            return _to_dict(await stripe.Subscription.modify_async(subscription_id, cancel_at=""))
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to clear scheduled cancellation: {str(e)}",
            ) from e

    async def cancel_subscription(
        self, subscription_id: str, *, prorate: bool = False
    ) -> Dict[str, Any]:
        """Cancel a subscription immediately."""
        try:
            result = await stripe.Subscription.cancel_async(subscription_id, prorate=prorate)
            return _to_dict(result)
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to cancel subscription: {str(e)}",
            ) from e

    # Subscription schedule operations

    async def get_subscription_schedule(self, schedule_id: str) -> Dict[str, Any]:
        """Retrieve a subscription schedule."""
        try:
            return _to_dict(await stripe.SubscriptionSchedule.retrieve_async(schedule_id))
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to retrieve subscription schedule: {str(e)}",
            ) from e

    async def create_subscription_schedule(
        self, subscription_id: str
    ) -> Dict[str, Any]:
        """Attach a schedule to an existing subscription."""
        try:
            result = await stripe.SubscriptionSchedule.create_async(
                from_subscription=subscription_id
            )
            return _to_dict(result)
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to create subscription schedule: {str(e)}",
            ) from e

    async def update_subscription_schedule(
        self,
        schedule_id: str,
        *,
        phases: List[Dict[str, Any]],
        end_behavior: str = "release",
        proration_behavior: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Replace the phases of a subscription schedule."""
        try:
            params: Dict[str, Any] = {"phases": phases, "end_behavior": end_behavior}
            if proration_behavior:
                params["proration_behavior"] = proration_behavior
            return _to_dict(await stripe.SubscriptionSchedule.modify_async(schedule_id, **params))
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to update subscription schedule: {str(e)}",
            ) from e

    async def release_subscription_schedule(
        self, schedule_id: str
    ) -> Dict[str, Any]:
        """Release a schedule, leaving the subscription on its current phase."""
        try:
            return _to_dict(await stripe.SubscriptionSchedule.release_async(schedule_id))
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to release subscription schedule: {str(e)}",
            ) from e

    # Checkout operations

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        *,
        expires_at: int,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a subscription checkout session expiring at ``expires_at`` (epoch s)."""
        try:
            clean_metadata = self._clean_metadata(metadata)

            result = await stripe.checkout.Session.create_async(
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=self._sanitize_text(success_url),
                cancel_url=self._sanitize_text(cancel_url),
                expires_at=expires_at,
                metadata=clean_metadata,
                allow_promotion_codes=True,
                billing_address_collection="required",
                customer_update={
                    "address": "auto",
                    "name": "auto",
                },
                subscription_data={
                    "metadata": clean_metadata,
                },
            )
            return _to_dict(result)
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to create checkout session: {str(e)}",
            ) from e

    async def get_checkout_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Retrieve a checkout session, or None when Stripe no longer knows it."""
        try:
            return _to_dict(await stripe.checkout.Session.retrieve_async(session_id))
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing":
                return None
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to retrieve checkout session: {str(e)}",
            ) from e
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to retrieve checkout session: {str(e)}",
            ) from e

    # Portal operations

    async def create_portal_session(
        self, customer_id: str, return_url: str
    ) -> Dict[str, Any]:
        """Create a customer portal session."""
        try:
            result = await stripe.billing_portal.Session.create_async(
                customer=customer_id,
                return_url=self._sanitize_text(return_url),
            )
            return _to_dict(result)
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to create portal session: {str(e)}",
            ) from e

    # Invoice, charge and refund operations

    async def list_invoices(
        self, customer_id: str, *, status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """List a customer's invoices, newest first."""
        params: Dict[str, Any] = {"customer": customer_id}
        if status:
            params["status"] = status
        try:
            return await self._list_all(stripe.Invoice.list_async, **params)
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to list invoices: {str(e)}",
            ) from e

    async def list_charges(self, customer_id: str) -> List[Dict[str, Any]]:
        """List a customer's charges."""
        try:
            return await self._list_all(stripe.Charge.list_async, customer=customer_id)
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to list charges: {str(e)}",
            ) from e

    async def list_refunds(self, *, created_gte: Optional[int] = None) -> List[Dict[str, Any]]:
        """List account refunds, optionally only those created at or after ``created_gte`` (s).

        Refunds cannot be filtered by customer; callers intersect with the
        customer's charges.
        """
        params: Dict[str, Any] = {}
        if created_gte is not None:
            params["created"] = {"gte": created_gte}
        try:
            return await self._list_all(stripe.Refund.list_async, **params)
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to list refunds: {str(e)}",
            ) from e

    async def create_refund(
        self,
        *,
        charge: Optional[str] = None,
        payment_intent: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        reason: str = "requested_by_customer",
    ) -> Dict[str, Any]:
        """Refund a charge or a payment intent in full."""
        params: Dict[str, Any] = {"reason": reason, "metadata": self._clean_metadata(metadata)}
        if charge:
            params["charge"] = charge
        elif payment_intent:
            params["payment_intent"] = payment_intent
        else:
            raise ValueError("Either charge or payment_intent is required")

        try:
            return _to_dict(await stripe.Refund.create_async(**params))
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to create refund: {str(e)}",
            ) from e

    async def list_events(
        self, types: List[str], *, created_gte: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """List account events of the given types."""
        params: Dict[str, Any] = {"types": types}
        if created_gte is not None:
            params["created"] = {"gte": created_gte}
        try:
            return await self._list_all(stripe.Event.list_async, **params)
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to list events: {str(e)}",
            ) from e

    async def get_price(self, price_id: str) -> Dict[str, Any]:
        """Retrieve a price with its product expanded."""
        try:
            return _to_dict(await stripe.Price.retrieve_async(price_id, expand=["product"]))
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to retrieve price: {str(e)}",
            ) from e

    # Payment method operations

    async def detect_payment_method(
        self, subscription: Dict[str, Any]
    ) -> tuple[bool, Optional[str]]:
        """Detect if subscription has a payment method.

        Returns:
            Tuple of (has_payment_method, payment_method_id)
        """
        pm = subscription.get("default_payment_method")
        pm_id = pm.get("id") if isinstance(pm, dict) else pm
        if pm_id:
            return True, pm_id

        customer = subscription.get("customer")
        customer_id = customer.get("id") if isinstance(customer, dict) else customer
        if not customer_id:
            return False, None

        customer_obj = await self.get_customer(customer_id)
        inv_settings = customer_obj.get("invoice_settings") or {}
        inv_pm = inv_settings.get("default_payment_method")
        inv_pm_id = inv_pm.get("id") if isinstance(inv_pm, dict) else inv_pm
        if inv_pm_id:
            return True, inv_pm_id

        default_source = customer_obj.get("default_source")
        if default_source:
            return True, default_source

        return False, None

    # Webhook operations

    def verify_webhook_signature(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify and construct webhook event.

        Raises:
            ConfigurationError: If no signing secret is configured.
            WebhookSignatureError: If the payload or signature is invalid.
        """
        secret = settings.webhook_secret_for("stripe")
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid webhook payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid webhook signature: {e}") from e
        return _to_dict(event)


def require_stripe(client: Optional["StripeClient"]) -> "StripeClient":
    """Return the client, failing when billing runs without Stripe."""
    if client is None:
        raise ConfigurationError("Stripe is not enabled")
    return client


# Singleton instance
stripe_client = StripeClient() if settings.STRIPE_ENABLED else None
