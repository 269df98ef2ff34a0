"""CRUD operations for the application."""

from .crud_billing_audit_event import billing_audit_event
from .crud_billing_customer import billing_customer
from .crud_organization import organization
from .crud_stripe_webhook_event import stripe_webhook_event
from .crud_subscription_snapshot import subscription_snapshot
from .crud_trial_usage import trial_usage

__all__ = [
    "billing_audit_event",
    "billing_customer",
    "organization",
    "stripe_webhook_event",
    "subscription_snapshot",
    "trial_usage",
]
