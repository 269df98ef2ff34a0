"""Billing audit event model."""

from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from planstate.models._base import Base


class BillingAuditEvent(Base):
    """Append-only record of a successful billing mutation."""

    __tablename__ = "billing_audit_event"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False)

    previous_tier: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    previous_interval: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    new_tier: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    new_interval: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    was_trialing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # "immediate" or "scheduled"
    effective: Mapped[str] = mapped_column(String(16), nullable=False, default="immediate")
    effective_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
