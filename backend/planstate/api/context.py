"""Unified application context for API requests.

This module provides a context object that combines the acting organization,
logging, and request metadata into a single injectable dependency.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from planstate import schemas
from planstate.core.logging import ContextualLogger


class ApiContext(BaseModel):
    """Unified context for API requests.

    Combines the organization an admin acts on, logging, and request metadata
    into a single context object that can be injected into endpoints via
    FastAPI dependencies. Billing services also build one for system-initiated
    work such as webhook processing.
    """

    # Request metadata
    request_id: str

    organization: schemas.Organization
    auth_method: str  # "admin", "system"
    auth_metadata: Optional[Dict[str, Any]] = None

    # Contextual logger with all dimensions pre-configured
    logger: ContextualLogger

    model_config = ConfigDict(arbitrary_types_allowed=True)  # For ContextualLogger

    @property
    def is_system(self) -> bool:
        """Whether the work was initiated by the system rather than an admin."""
        return self.auth_method == "system"

    def __str__(self) -> str:
        """String representation for logging."""
        return (
            f"ApiContext(request_id={self.request_id[:8]}..., "
            f"method={self.auth_method}, org={self.organization.id})"
        )
