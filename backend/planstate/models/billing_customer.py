"""Billing customer binding model."""

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from planstate.models._base import Base

if TYPE_CHECKING:
    from planstate.models.organization import Organization


class BillingCustomer(Base):
    """Binds an organization to its Stripe customer. One per organization."""

    __tablename__ = "billing_customer"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    stripe_customer_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="billing_customer", lazy="noload"
    )
