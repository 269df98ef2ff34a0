"""Subscription snapshot model."""

from typing import Optional
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from planstate.models._base import Base


class SubscriptionSnapshot(Base):
    """Local projection of one Stripe subscription.

    Rows for a customer are replaced wholesale on every resync. All timestamps
    are epoch milliseconds as reported by the processor.
    """

    __tablename__ = "subscription_snapshot"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.id", ondelete="CASCADE"), nullable=False, index=True
    )
    stripe_customer_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(
        String, nullable=True, index=True
    )
    stripe_price_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="none")
    tier: Mapped[str] = mapped_column(String(32), nullable=False, default="personal")
    billing_interval: Mapped[str] = mapped_column(String(16), nullable=False, default="month")
    seat_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    subscription_created_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    current_period_start: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    current_period_end: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancel_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    trial_start: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    trial_end: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    payment_method_brand: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    payment_method_last4: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)

    # Future phase of an attached schedule (scheduled downgrade)
    scheduled_price_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    schedule_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # First-time checkout that has not completed yet
    pending_checkout_session_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    pending_price_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
