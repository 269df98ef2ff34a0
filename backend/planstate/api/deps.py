"""Dependencies that are used in the API endpoints."""

import uuid
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from planstate import crud, schemas
from planstate.api.context import ApiContext
from planstate.core.exceptions import NotFoundException
from planstate.core.logging import logger
from planstate.db.session import get_db
from planstate.platform.billing.billing_service import BillingService, billing_service


async def get_context(
    organization_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> ApiContext:
    """Create the context for an administrative billing request.

    The organization comes from the route. Callers reach these routes only
    through the admin gateway, which authenticates them upstream.

    Args:
    ----
        organization_id (UUID): The organization the request acts on.
        request (Request): The incoming request.
        db (AsyncSession): Database session.

    Returns:
    -------
        ApiContext: Context with the organization and a contextual logger.

    Raises:
    ------
        NotFoundException: If the organization does not exist.

    """
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())

    organization = await crud.organization.get(db, id=organization_id)
    if organization is None:
        raise NotFoundException(f"Organization {organization_id} not found")

    return ApiContext(
        request_id=request_id,
        organization=schemas.Organization.model_validate(organization, from_attributes=True),
        auth_method="admin",
        logger=logger.with_context(
            request_id=request_id,
            organization_id=str(organization_id),
            auth_method="admin",
        ),
    )


def get_billing_service() -> BillingService:
    """Billing service shared by all requests."""
    return billing_service


__all__ = ["get_billing_service", "get_context", "get_db"]
