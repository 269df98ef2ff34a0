"""Trial usage model."""

from typing import Optional
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from planstate.models._base import Base


class TrialUsage(Base):
    """Records that an organization consumed its one trial. Never deleted."""

    __tablename__ = "trial_usage"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    has_used_trial: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    trial_started_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    trial_ends_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
