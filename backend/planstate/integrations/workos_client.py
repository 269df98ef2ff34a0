"""WorkOS API client for the organization directory.

The directory owns organizations; billing only reads an organization's name and
pushes the Stripe customer ID onto it.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from planstate.core.config import settings
from planstate.core.exceptions import ExternalServiceError, NotFoundException
from planstate.core.logging import logger


class WorkOSRateLimitError(Exception):
    """Custom exception for WorkOS rate limit errors."""

    def __init__(self, message: str, retry_after: Optional[int] = None):
        """Initialize WorkOS rate limit error.

        Args:
            message: Error message
            retry_after: Number of seconds to wait before retrying
        """
        super().__init__(message)
        self.retry_after = retry_after


class WorkOSClient:
    """Client for WorkOS organization operations."""

    DEFAULT_TIMEOUT = 20.0

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        """Initialize the WorkOS client."""
        self.api_key = api_key or settings.WORKOS_API_KEY
        self.base_url = (base_url or settings.WORKOS_API_URL).rstrip("/")

    def _get_retry_after(self, response: httpx.Response) -> Optional[int]:
        """Extract retry-after header value from response."""
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return int(retry_after)
            except ValueError:
                logger.warning(f"Invalid retry-after header value: {retry_after}")
        return None

    @retry(
        retry=retry_if_exception_type((WorkOSRateLimitError, httpx.TransportError)),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make an authenticated request to the WorkOS API.

        Args:
            method: HTTP method (GET, PUT, ...)
            endpoint: API endpoint path
            json_data: JSON payload for PUT/POST requests

        Returns:
            Decoded JSON response body

        Raises:
            NotFoundException: If the directory has no such resource.
            ExternalServiceError: On any other non-success response.
        """
        headers = {"Authorization": f"Bearer {self.api_key}"}
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        async with httpx.AsyncClient() as client:
            response = await client.request(
                method, url, headers=headers, json=json_data, timeout=self.DEFAULT_TIMEOUT
            )

        if response.status_code == 429:
            retry_after = self._get_retry_after(response)
            error_msg = "WorkOS rate limit exceeded"
            if retry_after:
                logger.warning(f"{error_msg}. Retry after {retry_after} seconds.")
                await asyncio.sleep(retry_after)
            raise WorkOSRateLimitError(error_msg, retry_after)

        if response.status_code == 404:
            raise NotFoundException(f"WorkOS resource not found: {endpoint}")

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                service_name="WorkOS",
                message=f"{method} {endpoint} failed with {response.status_code}",
            ) from e

        return response.json() if response.content else {}

    async def get_organization(self, organization_id: str) -> Dict[str, Any]:
        """Fetch a directory organization (``id``, ``name``, ``stripe_customer_id``...)."""
        return await self._make_request("GET", f"/organizations/{organization_id}")

    async def set_stripe_customer(
        self, organization_id: str, stripe_customer_id: str
    ) -> Dict[str, Any]:
        """Point a directory organization at its Stripe customer."""
        organization = await self._make_request(
            "PUT",
            f"/organizations/{organization_id}",
            json_data={"stripe_customer_id": stripe_customer_id},
        )
        logger.info(
            f"Linked Stripe customer {stripe_customer_id} to WorkOS organization {organization_id}"
        )
        return organization


# Singleton instance
workos_client = WorkOSClient() if settings.WORKOS_API_KEY else None
