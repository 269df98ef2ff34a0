"""Processed Stripe webhook event model."""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from planstate.models._base import Base


class StripeWebhookEvent(Base):
    """Ledger of webhook events whose resync completed."""

    __tablename__ = "stripe_webhook_event"

    event_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
