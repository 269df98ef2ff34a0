"""Main module of the FastAPI application.

This module sets up the FastAPI application and the middleware to log incoming requests
and unhandled exceptions.
"""

import os
import subprocess
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from planstate.api.middleware import (
    add_request_id,
    exception_logging_middleware,
    external_service_exception_handler,
    invalid_state_exception_handler,
    log_requests,
    not_found_exception_handler,
    planstate_exception_handler,
    validation_exception_handler,
)
from planstate.api.router import TrailingSlashRouter
from planstate.api.v1.api import api_router
from planstate.core.config import settings
from planstate.core.exceptions import (
    ExternalServiceError,
    InvalidStateError,
    NotFoundException,
    PlanstateException,
)
from planstate.core.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events.

    Brings the database schema up to date when migrations are enabled.
    """
    if settings.RUN_ALEMBIC_MIGRATIONS:
        logger.info("Running alembic migrations...")
        env = os.environ.copy()
        backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        env["PYTHONPATH"] = backend_dir
        subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            cwd=backend_dir,
            env=env,
        )

    yield


# Create FastAPI app with our custom router and disable FastAPI's built-in redirects
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url="/openapi.json",
    router=TrailingSlashRouter(),
    redirect_slashes=False,  # Critical: disable FastAPI's built-in slash redirects
    lifespan=lifespan,
)

app.include_router(api_router)

# Register middleware directly
app.middleware("http")(add_request_id)
app.middleware("http")(log_requests)
app.middleware("http")(exception_logging_middleware)

# Register exception handlers
app.exception_handler(RequestValidationError)(validation_exception_handler)
app.exception_handler(ValidationError)(validation_exception_handler)
app.exception_handler(NotFoundException)(not_found_exception_handler)
app.exception_handler(InvalidStateError)(invalid_state_exception_handler)
app.exception_handler(ExternalServiceError)(external_service_exception_handler)

# Register custom planstate exception handlers
app.exception_handler(PlanstateException)(planstate_exception_handler)


@app.get("/health", include_in_schema=False)
async def health() -> dict:
    """Liveness probe.

    Returns:
    -------
        dict: Always ``{"status": "healthy"}`` while the process serves requests.

    """
    return {"status": "healthy"}
