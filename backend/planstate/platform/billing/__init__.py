"""Billing: subscription state reconciliation against Stripe."""
