"""Unit tests for the WorkOS directory client."""

import json

import httpx
import pytest

from planstate.core.exceptions import ExternalServiceError, NotFoundException
from planstate.integrations.workos_client import WorkOSClient


class Recorder(list):
    """Requests seen by the mock transport."""

    response = httpx.Response(200, json={})


@pytest.fixture
def sent_requests(monkeypatch):
    """Route the client's HTTP traffic to an in-process handler.

    Set ``sent_requests.response`` to choose what the directory answers.
    Every request is appended to the list.
    """
    real_client = httpx.AsyncClient
    sent = Recorder()

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return sent.response

    monkeypatch.setattr(
        httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    return sent


@pytest.fixture
def client() -> WorkOSClient:
    return WorkOSClient(api_key="sk_workos_test", base_url="https://directory.test/")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_organization(client, sent_requests):
    sent_requests.response = httpx.Response(
        200, json={"id": "org_1", "name": "Acme", "stripe_customer_id": "cus_1"}
    )

    organization = await client.get_organization("org_1")

    assert organization["stripe_customer_id"] == "cus_1"
    request = sent_requests[0]
    assert request.method == "GET"
    assert str(request.url) == "https://directory.test/organizations/org_1"
    assert request.headers["Authorization"] == "Bearer sk_workos_test"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_set_stripe_customer(client, sent_requests):
    sent_requests.response = httpx.Response(
        200, json={"id": "org_1", "stripe_customer_id": "cus_9"}
    )

    organization = await client.set_stripe_customer("org_1", "cus_9")

    assert organization["stripe_customer_id"] == "cus_9"
    request = sent_requests[0]
    assert request.method == "PUT"
    assert json.loads(request.content) == {"stripe_customer_id": "cus_9"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_response_body(client, sent_requests):
    sent_requests.response = httpx.Response(204)

    assert await client.set_stripe_customer("org_1", "cus_9") == {}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_organization(client, sent_requests):
    sent_requests.response = httpx.Response(404, json={"message": "Not found"})

    with pytest.raises(NotFoundException):
        await client.get_organization("org_missing")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_server_error_is_not_retried(client, sent_requests):
    sent_requests.response = httpx.Response(500, json={"message": "Internal error"})

    with pytest.raises(ExternalServiceError) as exc_info:
        await client.set_stripe_customer("org_1", "cus_9")

    assert exc_info.value.service_name == "WorkOS"
    assert len(sent_requests) == 1
