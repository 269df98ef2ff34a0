"""API routes for the FastAPI application."""

from planstate.api.router import TrailingSlashRouter
from planstate.api.v1.endpoints import billing

# Use our custom router that handles trailing slashes
api_router = TrailingSlashRouter()

api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
