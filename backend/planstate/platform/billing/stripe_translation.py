"""Parsing of Stripe objects into typed values.

Stripe responses vary with API version and expansion: a reference can be a bare
ID or an expanded object, and period fields moved from the subscription onto its
items. All of that branching lives here so billing logic only sees the
dataclasses below. Inputs are the plain dicts ``StripeClient`` returns.
"""

from dataclasses import dataclass
from typing import Any, Optional

from planstate.core.datetime_utils import seconds_to_ms

TERMINAL_STATUSES = frozenset({"canceled", "incomplete_expired"})
QUALIFYING_STATUSES = frozenset({"active", "trialing"})


def id_of(value: Any) -> Optional[str]:
    """ID of a Stripe reference that may be a bare ID or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return None


def _items(subscription: dict) -> list:
    return (subscription.get("items") or {}).get("data") or []


@dataclass
class ParsedSubscription:
    """The fields of a Stripe subscription billing cares about. Times in epoch ms."""

    id: str
    customer_id: Optional[str]
    status: str
    price_id: Optional[str]
    price_interval: Optional[str]
    unit_amount: Optional[int]
    currency: str
    created: Optional[int]
    current_period_start: Optional[int]
    current_period_end: Optional[int]
    cancel_at_period_end: bool
    cancel_at: Optional[int]
    canceled_at: Optional[int]
    ended_at: Optional[int]
    trial_start: Optional[int]
    trial_end: Optional[int]
    payment_method_brand: Optional[str]
    payment_method_last4: Optional[str]
    schedule_id: Optional[str]

    @property
    def is_qualifying(self) -> bool:
        """Whether the subscription counts as the organization's current plan."""
        return self.status in QUALIFYING_STATUSES

    @property
    def is_terminal(self) -> bool:
        """Whether the subscription can no longer change state."""
        return self.status in TERMINAL_STATUSES


def parse_subscription(subscription: dict) -> ParsedSubscription:
    """Parse a Stripe subscription.

    A subscription scheduled to cancel through either ``cancel_at_period_end`` or
    an explicit ``cancel_at`` date is reported with ``cancel_at_period_end=True``.
    """
    items = _items(subscription)
    item = items[0] if items else {}
    price = item.get("price") or {}
    recurring = price.get("recurring") if isinstance(price, dict) else None

    period_start = item.get("current_period_start") or subscription.get("current_period_start")
    period_end = item.get("current_period_end") or subscription.get("current_period_end")

    brand = last4 = None
    payment_method = subscription.get("default_payment_method")
    if isinstance(payment_method, dict):
        card = payment_method.get("card") or {}
        brand = card.get("brand")
        last4 = card.get("last4")

    cancel_at = subscription.get("cancel_at")

    return ParsedSubscription(
        id=subscription["id"],
        customer_id=id_of(subscription.get("customer")),
        status=subscription.get("status") or "none",
        price_id=id_of(price),
        price_interval=(recurring or {}).get("interval"),
        unit_amount=price.get("unit_amount") if isinstance(price, dict) else None,
        currency=(price.get("currency") if isinstance(price, dict) else None) or "usd",
        created=seconds_to_ms(subscription.get("created")),
        current_period_start=seconds_to_ms(period_start),
        current_period_end=seconds_to_ms(period_end),
        cancel_at_period_end=(
            bool(subscription.get("cancel_at_period_end")) or cancel_at is not None
        ),
        cancel_at=seconds_to_ms(cancel_at),
        canceled_at=seconds_to_ms(subscription.get("canceled_at")),
        ended_at=seconds_to_ms(subscription.get("ended_at")),
        trial_start=seconds_to_ms(subscription.get("trial_start")),
        trial_end=seconds_to_ms(subscription.get("trial_end")),
        payment_method_brand=brand,
        payment_method_last4=last4,
        schedule_id=id_of(subscription.get("schedule")),
    )


def pick_authoritative(
    subscriptions: list[ParsedSubscription],
) -> Optional[ParsedSubscription]:
    """The most recently created active or trialing subscription, if any."""
    qualifying = [s for s in subscriptions if s.is_qualifying]
    if not qualifying:
        return None
    return max(qualifying, key=lambda s: s.created or 0)


def scheduled_price_of(schedule: dict) -> Optional[str]:
    """Price of the first phase that starts after the schedule's current phase."""
    if schedule.get("status") not in ("active", "not_started"):
        return None

    current = schedule.get("current_phase") or {}
    current_end = current.get("end_date")
    for phase in schedule.get("phases") or []:
        if current_end is None or (phase.get("start_date") or 0) >= current_end:
            phase_items = phase.get("items") or []
            if phase_items:
                return id_of(phase_items[0].get("price"))
    return None


def current_phase_start(schedule: dict) -> Optional[int]:
    """Start (epoch s) of the schedule's current phase."""
    current = schedule.get("current_phase") or {}
    if current.get("start_date"):
        return current["start_date"]
    phases = schedule.get("phases") or []
    return phases[0].get("start_date") if phases else None


def event_customer_id(event: dict) -> Optional[str]:
    """Stripe customer an event is about."""
    obj = (event.get("data") or {}).get("object") or {}
    if obj.get("object") == "customer":
        return obj.get("id")
    return id_of(obj.get("customer"))


def event_object(event: dict) -> dict:
    """The object an event carries."""
    return (event.get("data") or {}).get("object") or {}


def invoice_payment_refs(invoice: dict) -> tuple[Optional[str], Optional[str]]:
    """Return ``(charge_id, payment_intent_id)`` that paid an invoice.

    Newer API versions move both references into ``invoice.payments``.
    """
    charge_id = id_of(invoice.get("charge"))
    payment_intent_id = id_of(invoice.get("payment_intent"))
    if charge_id or payment_intent_id:
        return charge_id, payment_intent_id

    for invoice_payment in (invoice.get("payments") or {}).get("data") or []:
        payment = invoice_payment.get("payment") or {}
        charge_id = id_of(payment.get("charge"))
        payment_intent_id = id_of(payment.get("payment_intent"))
        if charge_id or payment_intent_id:
            return charge_id, payment_intent_id

    return None, None


def invoice_subscription_id(invoice: dict) -> Optional[str]:
    """Subscription an invoice belongs to."""
    subscription_id = id_of(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return id_of(details.get("subscription"))


def invoice_line_price_id(line: dict) -> Optional[str]:
    """Price a line item was billed at."""
    price = line.get("price")
    if price:
        return id_of(price)
    pricing = line.get("pricing") or {}
    return (pricing.get("price_details") or {}).get("price")


def refund_charge_id(refund: dict) -> Optional[str]:
    """Charge a refund was issued against."""
    return id_of(refund.get("charge"))
