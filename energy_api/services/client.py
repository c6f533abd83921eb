"""
UpstreamClient - one HTTP GET against the EnergiDataService dataset API.

The client is a translation layer only: it never retries, never caches,
and never raises for HTTP-level problems. Every call ends in one of the
UpstreamOutcome variants:

- Success(records)        HTTP 2xx with a parseable body (records may be empty)
- EmptyNotFound()         HTTP 400/404, upstream's "no data for this range"
- RetryableFailure(code)  HTTP 429/503
- FatalFailure(error)     any other status, network error, bad body, timeout
"""

import json
from dataclasses import dataclass, field
from typing import Any, Union

import httpx
from loguru import logger

from energy_api.services.errors import (
    RequestTimeoutError,
    UpstreamFatalError,
)

EMPTY_STATUSES = frozenset({400, 404})
RETRYABLE_STATUSES = frozenset({429, 503})


@dataclass(frozen=True)
class UpstreamQuery:
    """A fully-formed upstream query for one dataset."""

    dataset: str
    start: str
    end: str
    filter: dict[str, list[str]] | None = None
    sort: str | None = None
    limit: int | None = None

    def to_params(self) -> dict[str, str]:
        params = {"start": self.start, "end": self.end}
        if self.filter:
            params["filter"] = json.dumps(self.filter, separators=(",", ":"), sort_keys=True)
        if self.sort:
            params["sort"] = self.sort
        if self.limit is not None:
            params["limit"] = str(self.limit)
        return params


@dataclass(frozen=True)
class Success:
    records: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class EmptyNotFound:
    status_code: int = 404


@dataclass(frozen=True)
class RetryableFailure:
    status_code: int


@dataclass(frozen=True)
class FatalFailure:
    error: Exception


UpstreamOutcome = Union[Success, EmptyNotFound, RetryableFailure, FatalFailure]


class UpstreamClient:
    """
    Async client for the upstream dataset API.

    Usage:
        client = UpstreamClient("https://api.energidataservice.dk/dataset")
        outcome = await client.fetch(
            UpstreamQuery("CO2Emis", start="2024-01-01T00:00", end="2024-01-02T00:00")
        )
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        user_agent: str = "energy-api",
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._user_agent = user_agent
        self._http_client = http_client
        self._owns_client = http_client is None
        self.calls = 0

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._http_client

    async def fetch(self, query: UpstreamQuery) -> UpstreamOutcome:
        """Issue a single GET for query and classify the result."""
        client = self._get_http_client()
        url = f"{self.base_url}/{query.dataset}"
        self.calls += 1

        try:
            response = await client.get(
                url,
                params=query.to_params(),
                headers={
                    "Accept": "application/json",
                    "User-Agent": self._user_agent,
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            logger.warning(f"[Upstream] {query.dataset} timed out after {self.timeout}s")
            return FatalFailure(RequestTimeoutError(query.dataset, self.timeout))
        except httpx.RequestError as e:
            logger.warning(f"[Upstream] {query.dataset} request failed: {e!r}")
            return FatalFailure(UpstreamFatalError(repr(e), service_id=query.dataset))

        return self._classify(query, response)

    def _classify(self, query: UpstreamQuery, response: httpx.Response) -> UpstreamOutcome:
        status = response.status_code

        if response.is_success:
            try:
                body = response.json()
            except ValueError as e:
                return FatalFailure(
                    UpstreamFatalError(f"Unparseable body: {e}", service_id=query.dataset)
                )
            if not isinstance(body, dict):
                return FatalFailure(
                    UpstreamFatalError("Body is not a JSON object", service_id=query.dataset)
                )
            records = body.get("records")
            if records is None:
                records = []
            if not isinstance(records, list):
                return FatalFailure(
                    UpstreamFatalError("'records' is not a list", service_id=query.dataset)
                )
            return Success(records=records)

        if status in EMPTY_STATUSES:
            logger.info(f"[Upstream] {query.dataset} returned {status}, treating as no data")
            return EmptyNotFound(status_code=status)

        if status in RETRYABLE_STATUSES:
            logger.warning(f"[Upstream] {query.dataset} returned {status}")
            return RetryableFailure(status_code=status)

        return FatalFailure(
            UpstreamFatalError(
                f"HTTP {status}: {response.text[:200]}", service_id=query.dataset
            )
        )

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None
        logger.debug("UpstreamClient closed")
