"""CRUD operations for organizations."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.crud._base import CRUDBase
from planstate.models import Organization


class CRUDOrganization(
    CRUDBase[Organization, schemas.OrganizationCreate, schemas.OrganizationCreate]
):
    """CRUD operations for organizations."""

    async def get_by_external_id(
        self, db: AsyncSession, *, external_id: str
    ) -> Optional[Organization]:
        """Get an organization by its directory ID."""
        result = await db.execute(
            select(Organization).where(Organization.external_id == external_id)
        )
        return result.scalar_one_or_none()


organization = CRUDOrganization(Organization)
