"""CRUD operations for billing audit events."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.crud._base import CRUDBase
from planstate.models import BillingAuditEvent


class CRUDBillingAuditEvent(
    CRUDBase[BillingAuditEvent, schemas.BillingAuditEventCreate, schemas.BillingAuditEventCreate]
):
    """CRUD operations for billing audit events."""

    async def get_by_organization(
        self, db: AsyncSession, *, organization_id: UUID, limit: int = 100
    ) -> list[BillingAuditEvent]:
        """Audit trail of an organization, newest first."""
        query = (
            select(BillingAuditEvent)
            .where(BillingAuditEvent.organization_id == organization_id)
            .order_by(BillingAuditEvent.created_at.desc())
            .limit(limit)
        )
        result = await db.execute(query)
        return list(result.scalars().all())


billing_audit_event = CRUDBillingAuditEvent(BillingAuditEvent)
