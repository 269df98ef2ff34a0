"""Organization model."""

from typing import TYPE_CHECKING, Optional

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from planstate.models._base import Base

if TYPE_CHECKING:
    from planstate.models.billing_customer import BillingCustomer


class Organization(Base):
    """Organization model.

    Mirrors the directory's organization record. ``external_id`` is the
    directory's identifier and is what receives the billing customer reference.
    """

    __tablename__ = "organization"

    name: Mapped[str] = mapped_column(String, nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, unique=True)
    billing_email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    is_personal: Mapped[bool] = mapped_column(default=False, nullable=False)
    member_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    billing_customer: Mapped[Optional["BillingCustomer"]] = relationship(
        "BillingCustomer",
        back_populates="organization",
        uselist=False,
        lazy="noload",
    )
