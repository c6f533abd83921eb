from __future__ import annotations

import json

import httpx
import pytest

from energy_api.services.client import (
    EmptyNotFound,
    FatalFailure,
    RetryableFailure,
    Success,
    UpstreamClient,
    UpstreamQuery,
)
from energy_api.services.errors import RequestTimeoutError, UpstreamFatalError
from tests.shared.fakes import BASE_URL, Upstream

QUERY = UpstreamQuery(
    "CO2Emis",
    start="2024-03-15T00:00",
    end="2024-03-16T00:00",
    filter={"PriceArea": ["DK1"]},
    sort="Minutes5UTC ASC",
)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "body", "expected"),
    [
        (200, {"records": [{"a": 1}]}, Success([{"a": 1}])),
        (200, {"total": 0}, Success([])),
        (200, {"records": None}, Success([])),
        (400, {"error": "bad"}, EmptyNotFound(400)),
        (404, {}, EmptyNotFound(404)),
        (429, {}, RetryableFailure(429)),
        (503, {}, RetryableFailure(503)),
    ],
    ids=["ok", "missing-records", "null-records", "400", "404", "429", "503"],
)
async def test_status_classification(status, body, expected) -> None:
    upstream = Upstream((status, body))
    client = upstream.client()

    assert await client.fetch(QUERY) == expected
    await client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "body"),
    [(500, {}), (502, {}), (401, {}), (200, b"<html>"), (200, [1, 2]), (200, {"records": "x"})],
    ids=["500", "502", "401", "html", "array-body", "records-not-list"],
)
async def test_fatal_outcomes(status, body) -> None:
    client = Upstream((status, body)).client()

    outcome = await client.fetch(QUERY)

    assert isinstance(outcome, FatalFailure)
    assert isinstance(outcome.error, UpstreamFatalError)


@pytest.mark.asyncio
async def test_timeout_is_fatal() -> None:
    client = Upstream(httpx.ReadTimeout("slow")).client(timeout=10.0)

    outcome = await client.fetch(QUERY)

    assert isinstance(outcome, FatalFailure)
    assert isinstance(outcome.error, RequestTimeoutError)
    assert outcome.error.timeout == 10.0


@pytest.mark.asyncio
async def test_network_error_is_fatal() -> None:
    client = Upstream(httpx.ConnectError("refused")).client()

    outcome = await client.fetch(QUERY)

    assert isinstance(outcome, FatalFailure)


@pytest.mark.asyncio
async def test_request_shape() -> None:
    upstream = Upstream((200, {"records": []}))
    client = upstream.client()

    await client.fetch(QUERY)

    request = upstream.requests[0]
    assert str(request.url).startswith(f"{BASE_URL}/CO2Emis?")
    assert request.url.params["start"] == "2024-03-15T00:00"
    assert request.url.params["end"] == "2024-03-16T00:00"
    assert json.loads(request.url.params["filter"]) == {"PriceArea": ["DK1"]}
    assert request.url.params["sort"] == "Minutes5UTC ASC"
    assert "limit" not in request.url.params
    assert request.headers["accept"] == "application/json"
    assert client.calls == 1


@pytest.mark.asyncio
async def test_injected_http_client_is_not_closed() -> None:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    client = UpstreamClient(BASE_URL, http_client=http_client)

    await client.close()

    assert not http_client.is_closed
    await http_client.aclose()
