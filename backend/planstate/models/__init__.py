"""Models for the application."""

from ._base import Base
from .billing_audit_event import BillingAuditEvent
from .billing_customer import BillingCustomer
from .organization import Organization
from .stripe_webhook_event import StripeWebhookEvent
from .subscription_snapshot import SubscriptionSnapshot
from .trial_usage import TrialUsage

__all__ = [
    "Base",
    "BillingAuditEvent",
    "BillingCustomer",
    "Organization",
    "StripeWebhookEvent",
    "SubscriptionSnapshot",
    "TrialUsage",
]
