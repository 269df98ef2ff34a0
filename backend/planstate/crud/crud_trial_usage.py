"""CRUD operations for trial usage."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.crud._base import CRUDBase
from planstate.models import TrialUsage


class CRUDTrialUsage(CRUDBase[TrialUsage, schemas.TrialUsageCreate, schemas.TrialUsageCreate]):
    """CRUD operations for trial usage."""

    async def get_by_organization(
        self, db: AsyncSession, *, organization_id: UUID
    ) -> Optional[TrialUsage]:
        """Get the trial usage record of an organization."""
        result = await db.execute(
            select(TrialUsage).where(TrialUsage.organization_id == organization_id)
        )
        return result.scalar_one_or_none()


trial_usage = CRUDTrialUsage(TrialUsage)
