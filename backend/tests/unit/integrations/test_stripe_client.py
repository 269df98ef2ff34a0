"""Unit tests for the Stripe API client."""

import json
from unittest.mock import AsyncMock, patch

import pytest
import stripe

from planstate.core.config import settings
from planstate.core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    PaymentFailedError,
    WebhookSignatureError,
)
from planstate.integrations.stripe_client import PAGE_SIZE, StripeClient
from planstate.platform.billing.stripe_translation import event_customer_id, parse_subscription
from planstate.platform.billing.webhook_handler import BillingWebhookProcessor
from tests.fixtures.common import stripe_signature


def _sdk(values: dict, cls=stripe.StripeObject):
    """Build an SDK object the way the Stripe library returns it."""
    return cls.construct_from(values, "sk_test_123")


@pytest.fixture
def client(monkeypatch):
    """Stripe client against a patched SDK."""
    monkeypatch.setattr(settings, "STRIPE_ENABLED", True)
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(stripe, "api_key", None)
    return StripeClient()


class TestStripeClientInit:
    """Tests for StripeClient initialization."""

    def test_requires_stripe_enabled(self, monkeypatch):
        """Test that the client refuses to start with Stripe disabled."""
        monkeypatch.setattr(settings, "STRIPE_ENABLED", False)
        with pytest.raises(ValueError):
            StripeClient()

    def test_sets_api_key(self, client):
        """Test that the secret key is handed to the SDK."""
        assert stripe.api_key == "sk_test_123"


class TestStripeClientCalls:
    """Tests for request building and error mapping."""

    @pytest.mark.asyncio
    async def test_list_subscriptions_walks_every_page(self, client):
        """Test that list calls follow ``has_more`` with ``starting_after``."""
        pages = [
            _sdk(
                {"object": "list", "data": [{"id": "sub_1"}, {"id": "sub_2"}], "has_more": True},
                stripe.ListObject,
            ),
            _sdk(
                {"object": "list", "data": [{"id": "sub_3"}], "has_more": False},
                stripe.ListObject,
            ),
        ]
        with patch.object(
            stripe.Subscription, "list_async", AsyncMock(side_effect=pages)
        ) as mock_list:
            subscriptions = await client.list_subscriptions("cus_1")

        assert [s["id"] for s in subscriptions] == ["sub_1", "sub_2", "sub_3"]
        assert mock_list.await_count == 2
        first, second = (call.kwargs for call in mock_list.await_args_list)
        assert first["customer"] == "cus_1"
        assert first["status"] == "all"
        assert first["limit"] == PAGE_SIZE
        assert first["expand"] == ["data.default_payment_method"]
        assert "starting_after" not in first
        assert second["starting_after"] == "sub_2"

    @pytest.mark.asyncio
    async def test_create_customer_sanitizes_text(self, client):
        """Test that names and metadata are reduced to ASCII strings."""
        with patch.object(
            stripe.Customer, "create_async", AsyncMock(return_value=_sdk({"id": "cus_1"}))
        ) as mock_create:
            await client.create_customer(
                email="billing@acme.test", name="Café", metadata={"seats": 3}
            )

        kwargs = mock_create.await_args.kwargs
        assert kwargs["name"] == "Caf?"
        assert kwargs["email"] == "billing@acme.test"
        assert kwargs["metadata"] == {"seats": "3"}

    @pytest.mark.asyncio
    async def test_trial_subscription_pauses_without_payment_method(self, client):
        """Test that trials are created with the pause end behavior."""
        with patch.object(
            stripe.Subscription, "create_async", AsyncMock(return_value=_sdk({"id": "sub_1"}))
        ) as mock_create:
            await client.create_subscription("cus_1", "price_1", trial_period_days=14)

        kwargs = mock_create.await_args.kwargs
        assert kwargs["trial_period_days"] == 14
        assert kwargs["trial_settings"] == {
            "end_behavior": {"missing_payment_method": "pause"}
        }

    @pytest.mark.asyncio
    async def test_declined_card_raises_payment_failed(self, client):
        """Test that a card error on a price swap becomes PaymentFailedError."""
        subscription = {"id": "sub_1", "items": {"data": [{"id": "si_1"}]}}
        error = stripe.CardError("Your card was declined.", None, "card_declined")
        with patch.object(stripe.Subscription, "modify_async", AsyncMock(side_effect=error)):
            with pytest.raises(PaymentFailedError, match="Your card was declined"):
                await client.update_subscription_price(
                    subscription,
                    "price_2",
                    proration_behavior="always_invoice",
                    payment_behavior="error_if_incomplete",
                )

    @pytest.mark.asyncio
    async def test_price_swap_targets_the_single_item(self, client):
        """Test that a price swap replaces the price of the existing item."""
        subscription = {"id": "sub_1", "items": {"data": [{"id": "si_1"}]}}
        with patch.object(
            stripe.Subscription, "modify_async", AsyncMock(return_value=_sdk(subscription))
        ) as mock_modify:
            await client.update_subscription_price(
                subscription, "price_2", proration_behavior="none"
            )

        args, kwargs = mock_modify.await_args
        assert args == ("sub_1",)
        assert kwargs["items"] == [{"id": "si_1", "price": "price_2"}]
        assert kwargs["proration_behavior"] == "none"
        assert "payment_behavior" not in kwargs

    @pytest.mark.asyncio
    async def test_price_swap_without_items_raises(self, client):
        """Test that a subscription without items cannot change price."""
        with pytest.raises(ExternalServiceError):
            await client.update_subscription_price(
                {"id": "sub_1", "items": {"data": []}}, "price_2", proration_behavior="none"
            )

    @pytest.mark.asyncio
    async def test_stripe_errors_become_external_service_errors(self, client):
        """Test that SDK errors surface as ExternalServiceError."""
        error = stripe.APIConnectionError("Network unreachable")
        with patch.object(stripe.Subscription, "cancel_async", AsyncMock(side_effect=error)):
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.cancel_subscription("sub_1")

        assert exc_info.value.service_name == "Stripe"
        assert not isinstance(exc_info.value, PaymentFailedError)

    @pytest.mark.asyncio
    async def test_missing_checkout_session_returns_none(self, client):
        """Test that a vanished checkout session reads as None."""
        error = stripe.InvalidRequestError("No such session", "id", code="resource_missing")
        with patch.object(
            stripe.checkout.Session, "retrieve_async", AsyncMock(side_effect=error)
        ):
            assert await client.get_checkout_session("cs_gone") is None

    @pytest.mark.asyncio
    async def test_refund_requires_a_payment_reference(self, client):
        """Test that a refund needs a charge or a payment intent."""
        with pytest.raises(ValueError):
            await client.create_refund()

    @pytest.mark.asyncio
    async def test_refund_prefers_the_charge(self, client):
        """Test that the charge is used when both references are known."""
        with patch.object(
            stripe.Refund, "create_async", AsyncMock(return_value=_sdk({"id": "re_1"}))
        ) as mock_create:
            await client.create_refund(charge="ch_1", payment_intent="pi_1")

        kwargs = mock_create.await_args.kwargs
        assert kwargs["charge"] == "ch_1"
        assert "payment_intent" not in kwargs
        assert kwargs["reason"] == "requested_by_customer"


class TestPaymentMethodDetection:
    """Tests for detect_payment_method."""

    @pytest.mark.asyncio
    async def test_subscription_payment_method(self, client):
        """Test that an expanded subscription payment method is used first."""
        subscription = {"customer": "cus_1", "default_payment_method": {"id": "pm_1"}}
        assert await client.detect_payment_method(subscription) == (True, "pm_1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "customer, expected",
        [
            ({"invoice_settings": {"default_payment_method": "pm_2"}}, (True, "pm_2")),
            ({"invoice_settings": {}, "default_source": "card_1"}, (True, "card_1")),
            ({"invoice_settings": {}, "default_source": None}, (False, None)),
        ],
    )
    async def test_customer_payment_method(self, client, customer, expected):
        """Test the fallback to the customer's defaults."""
        subscription = {"customer": "cus_1", "default_payment_method": None}
        with patch.object(client, "get_customer", AsyncMock(return_value=customer)):
            assert await client.detect_payment_method(subscription) == expected


class TestWebhookVerification:
    """Tests for verify_webhook_signature."""

    def _payload(self) -> bytes:
        return json.dumps(
            {
                "id": "evt_1",
                "object": "event",
                "type": "customer.subscription.updated",
                "data": {"object": {"object": "subscription", "customer": "cus_1"}},
            }
        ).encode()

    def test_valid_signature(self, client):
        """Test that a correctly signed payload yields the event."""
        payload = self._payload()
        event = client.verify_webhook_signature(payload, stripe_signature(payload))
        assert event["id"] == "evt_1"
        assert event["type"] == "customer.subscription.updated"

    def test_wrong_secret(self, client):
        """Test that a payload signed with another secret is rejected."""
        payload = self._payload()
        with pytest.raises(WebhookSignatureError):
            client.verify_webhook_signature(payload, stripe_signature(payload, "whsec_other"))

    def test_tampered_payload(self, client):
        """Test that a payload changed after signing is rejected."""
        signature = stripe_signature(self._payload())
        with pytest.raises(WebhookSignatureError):
            client.verify_webhook_signature(self._payload().replace(b"cus_1", b"cus_2"), signature)

    def test_missing_secret(self, client, monkeypatch):
        """Test that verification without a signing secret is a configuration error."""
        monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", None)
        payload = self._payload()
        with pytest.raises(ConfigurationError):
            client.verify_webhook_signature(payload, stripe_signature(payload))


class TestSdkObjects:
    """Tests that SDK objects leave the client as plain dicts."""

    def _subscription(self) -> dict:
        return {
            "id": "sub_1",
            "object": "subscription",
            "customer": "cus_1",
            "status": "active",
            "created": 1_700_000_000,
            "cancel_at_period_end": False,
            "cancel_at": None,
            "schedule": None,
            "default_payment_method": {
                "id": "pm_1",
                "object": "payment_method",
                "card": {"brand": "visa", "last4": "4242"},
            },
            "items": {
                "object": "list",
                "has_more": False,
                "data": [
                    {
                        "id": "si_1",
                        "object": "subscription_item",
                        "current_period_start": 1_700_000_000,
                        "current_period_end": 1_702_592_000,
                        "price": {
                            "id": "price_pro_month",
                            "object": "price",
                            "unit_amount": 9900,
                            "currency": "usd",
                            "recurring": {"interval": "month"},
                        },
                    }
                ],
            },
        }

    @pytest.mark.asyncio
    async def test_listed_subscriptions_parse(self, client):
        """Test that listed subscriptions reach the parser as nested dicts."""
        page = _sdk(
            {"object": "list", "has_more": False, "data": [self._subscription()]},
            stripe.ListObject,
        )
        with patch.object(stripe.Subscription, "list_async", AsyncMock(return_value=page)):
            subscriptions = await client.list_subscriptions("cus_1")

        assert type(subscriptions[0]) is dict
        parsed = parse_subscription(subscriptions[0])
        assert parsed.customer_id == "cus_1"
        assert parsed.price_id == "price_pro_month"
        assert parsed.price_interval == "month"
        assert parsed.current_period_end == 1_702_592_000_000
        assert parsed.payment_method_brand == "visa"
        assert parsed.payment_method_last4 == "4242"

    @pytest.mark.asyncio
    async def test_price_swap_returns_a_dict(self, client):
        """Test that a modified subscription comes back as a plain dict."""
        subscription = self._subscription()
        with patch.object(
            stripe.Subscription,
            "modify_async",
            AsyncMock(return_value=_sdk(subscription, stripe.Subscription)),
        ):
            updated = await client.update_subscription_price(
                subscription, "price_pro_year", proration_behavior="none"
            )

        assert type(updated) is dict
        assert parse_subscription(updated).schedule_id is None

    @pytest.mark.asyncio
    async def test_customer_defaults_are_read_from_the_sdk_customer(self, client):
        """Test payment method detection against a retrieved SDK customer."""
        customer = _sdk(
            {
                "id": "cus_1",
                "object": "customer",
                "invoice_settings": {"default_payment_method": "pm_9"},
            },
            stripe.Customer,
        )
        subscription = {"customer": "cus_1", "default_payment_method": None}
        with patch.object(stripe.Customer, "retrieve_async", AsyncMock(return_value=customer)):
            assert await client.detect_payment_method(subscription) == (True, "pm_9")

    @pytest.mark.asyncio
    async def test_verified_event_drives_a_resync(
        self, client, db_session, billing, fake_stripe, ctx
    ):
        """Test that an event built by the SDK flows through the webhook processor."""
        customer_id = await billing.bindings.ensure_customer(db_session, ctx)
        await fake_stripe.create_subscription(customer_id, "price_pro_year")
        payload = json.dumps(
            {
                "id": "evt_sdk_1",
                "object": "event",
                "type": "customer.subscription.updated",
                "data": {
                    "object": {"id": "sub_1", "object": "subscription", "customer": customer_id}
                },
            }
        ).encode()

        event = client.verify_webhook_signature(payload, stripe_signature(payload))

        assert type(event) is dict
        assert event_customer_id(event) == customer_id
        processor = BillingWebhookProcessor(db_session, service=billing)
        assert await processor.process_event(event)
        current = await billing.repository.get_current_snapshot(db_session, customer_id)
        assert current.tier == "pro"
        assert await billing.repository.is_event_processed(db_session, "evt_sdk_1")
