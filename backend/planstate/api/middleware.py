"""Middleware for the FastAPI application.

This module contains middleware that process requests and responses, and the
handlers that turn billing exceptions into HTTP responses.
"""

import time
import traceback
import uuid
from typing import Union

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from planstate.core.config import settings
from planstate.core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    InvalidStateError,
    NoActiveSubscriptionError,
    NotFoundException,
    PaymentFailedError,
    PlanstateException,
    PreconditionFailedError,
    UnknownPriceError,
    WebhookSignatureError,
    unpack_validation_error,
)
from planstate.core.logging import logger


async def add_request_id(request: Request, call_next: callable) -> Response:
    """Middleware to generate and add a request ID to the request for tracing.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    request.state.request_id = str(uuid.uuid4())
    return await call_next(request)


async def log_requests(request: Request, call_next: callable) -> Response:
    """Middleware to log incoming requests.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time
    logger.info(
        (
            f"Handled request {request.method} {request.url.path} in {duration:.2f} seconds. "
            f"Response code: {response.status_code}"
        )
    )
    return response


async def exception_logging_middleware(request: Request, call_next: callable) -> Response:
    """Middleware to log unhandled exceptions.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    try:
        response = await call_next(request)
        return response
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}\n{traceback.format_exc()}")

        response_content = {
            "detail": f"Internal Server Error: {exc.__class__.__name__}: {str(exc)}"
        }

        # Stack traces only leave the server in development
        if settings.LOCAL_DEVELOPMENT or settings.DEBUG:
            response_content["trace"] = traceback.format_exc()

        return JSONResponse(status_code=500, content=response_content)


# Exception handlers
async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """Exception handler for validation errors that occur during request processing.

    Args:
    ----
        request (Request): The incoming request that triggered the exception.
        exc (Union[RequestValidationError, ValidationError]): The exception object that was raised.

    Returns:
    -------
        JSONResponse: A 422 Unprocessable Entity status response that details the validation
            errors, keyed by the location of each error in the request.

    """
    error_messages = unpack_validation_error(exc)
    logger.error(f"Validation error: {error_messages}")
    return JSONResponse(status_code=422, content=error_messages)


async def not_found_exception_handler(request: Request, exc: NotFoundException) -> JSONResponse:
    """Exception handler for NotFoundException.

    Args:
    ----
        request (Request): The incoming request that triggered the exception.
        exc (NotFoundException): The exception object that was raised.

    Returns:
    -------
        JSONResponse: A 404 Not Found status response that details the error message.

    """
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def invalid_state_exception_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
    """Exception handler for InvalidStateError.

    Args:
    ----
        request (Request): The incoming request that triggered the exception.
        exc (InvalidStateError): The exception object that was raised.

    Returns:
    -------
        JSONResponse: A 400 Bad Request status response that details the error message.

    """
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def external_service_exception_handler(
    request: Request, exc: ExternalServiceError
) -> JSONResponse:
    """Exception handler for failures of Stripe or WorkOS.

    Args:
    ----
        request (Request): The incoming request that triggered the exception.
        exc (ExternalServiceError): The exception object that was raised.

    Returns:
    -------
        JSONResponse: 402 when an immediate payment was declined, 502 otherwise.

    """
    logger.error(f"External service error on {request.url.path}: {exc}")
    status_code = 402 if isinstance(exc, PaymentFailedError) else 502
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def planstate_exception_handler(request: Request, exc: PlanstateException) -> JSONResponse:
    """Generic exception handler for all PlanstateException types.

    Maps different exception types to appropriate HTTP status codes based on their semantic meaning.

    Args:
    ----
        request (Request): The incoming request that triggered the exception.
        exc (PlanstateException): The exception object that was raised.

    Returns:
    -------
        JSONResponse: HTTP response with appropriate status code and error details.
    """
    status_code_map = {
        # 400 Bad Request - Client error
        UnknownPriceError: 400,
        WebhookSignatureError: 400,
        # 404 Not Found - Resource doesn't exist
        NotFoundException: 404,
        # 412 Precondition Failed - Billing state does not allow the operation
        PreconditionFailedError: 412,
        NoActiveSubscriptionError: 412,
        # 500 Internal Server Error - Missing or broken configuration
        ConfigurationError: 500,
    }

    status_code = status_code_map.get(type(exc), 400)
    if status_code >= 500:
        logger.error(f"Configuration error on {request.url.path}: {exc}")

    return JSONResponse(status_code=status_code, content={"detail": str(exc)})
