"""Organization schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class OrganizationBase(BaseModel):
    """Organization base schema."""

    name: str = Field(..., description="Display name of the organization")
    external_id: Optional[str] = Field(None, description="Directory organization ID")
    billing_email: Optional[str] = Field(None, description="Billing contact email")
    is_personal: bool = Field(False, description="Whether this is a personal workspace")
    member_count: int = Field(1, description="Number of members in the organization")


class OrganizationCreate(OrganizationBase):
    """Organization creation schema."""

    pass


class Organization(OrganizationBase):
    """Organization schema."""

    model_config = {"from_attributes": True}

    id: UUID
    created_at: datetime
    modified_at: datetime
