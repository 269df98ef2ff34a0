"""Subscription state reconciliation backend."""
