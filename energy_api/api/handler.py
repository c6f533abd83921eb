"""
EndpointHandler - the request state machine shared by every resource route.

    validate -> resolve -> local -> shared -> coalesced fetch -> fallback -> degraded

Only parameter validation can fail a request. Upstream outages, aggregation
errors and shared cache trouble end in a stale or degraded 200 instead.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from loguru import logger
from pydantic import ValidationError

from energy_api.datasource.base import BaseResource, ResolvedQuery
from energy_api.exceptions import ParameterValidationError
from energy_api.services.cache import utc_now
from energy_api.services.cache_service import CacheService
from energy_api.services.client import (
    EmptyNotFound,
    FatalFailure,
    RetryableFailure,
    Success,
    UpstreamClient,
    UpstreamOutcome,
)
from energy_api.services.errors import (
    UpstreamError,
    UpstreamFatalError,
    UpstreamUnavailableError,
)
from energy_api.services.retry import RetryExecutor

Clock = Callable[[], datetime]

STALE_CACHE_CONTROL = "public, s-maxage=60"
DEGRADED_CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=300"
STALE_WARNING = '110 - "Response is stale"'


def fresh_cache_control(ttl: int) -> str:
    return f"public, s-maxage={ttl}, stale-while-revalidate={ttl * 2}"


@dataclass(frozen=True)
class HandlerResult:
    """Payload plus the cache headers the route should send with it."""

    payload: dict[str, Any]
    cache_status: str
    cache_control: str
    degraded: bool = False
    stale: bool = False
    extra_headers: dict[str, str] = field(default_factory=dict)

    def headers(self) -> dict[str, str]:
        headers = {"X-Cache": self.cache_status, "Cache-Control": self.cache_control}
        if self.stale:
            headers["Warning"] = STALE_WARNING
        if self.degraded or self.stale:
            headers["X-Degraded"] = "true"
        headers.update(self.extra_headers)
        return headers


class EndpointHandler:
    """
    Serves one resource.

    Usage:
        handler = EndpointHandler(EmissionsResource(), cache_service, client, retry)
        result = await handler.handle({"region": "DK1"})
    """

    def __init__(
        self,
        resource: BaseResource,
        cache_service: CacheService,
        upstream: UpstreamClient,
        retry: RetryExecutor,
        clock: Clock = utc_now,
    ):
        self.resource = resource
        self.cache = cache_service
        self.upstream = upstream
        self.retry = retry
        self._clock = clock

    @property
    def name(self) -> str:
        return self.resource.name

    async def handle(self, raw_params: dict[str, str]) -> HandlerResult:
        """
        Serve one request.

        Raises:
            ParameterValidationError: malformed query parameters (before any I/O)
        """
        try:
            params = self.resource.parse(raw_params)
        except ValidationError as e:
            raise ParameterValidationError.from_pydantic(e) from e

        resolved = self.resource.resolve(params, self._clock())
        key = self.resource.cache_key(resolved)
        fallback_key = self.resource.fallback_key(resolved)

        hit = await self.cache.lookup(key)
        if hit is not None:
            status = "HIT-LOCAL" if hit.tier == "local" else "HIT-SHARED"
            logger.debug(f"[{self.name}] {status} {key}")
            return self._fresh(hit.payload, status)

        try:
            payload = await self.cache.coalescer.acquire(
                key, lambda: self._fetch(resolved, key, fallback_key)
            )
        except Exception as e:
            logger.warning(f"[{self.name}] Fetch failed for {key}: {e}")
            return await self._recover(resolved, fallback_key, e)

        return self._fresh(payload, "MISS")

    async def _fetch(self, resolved: ResolvedQuery, key: str, fallback_key: str) -> dict[str, Any]:
        """Runs once per coalesced key: retry, fetch, aggregate, store."""
        query = self.resource.upstream_query(resolved)
        logger.info(f"[{self.name}] Fetching {query.dataset} for {key}")

        outcome = await self.retry.run(lambda: self.upstream.fetch(query))
        records = self._records_from(outcome, query.dataset)

        response = self.resource.normalize(records, resolved)
        payload = response.to_payload()
        payload["metadata"]["status"] = "ok"
        payload["metadata"]["lastUpdated"] = self._timestamp()

        ttl = self.resource.ttl_for(len(response.records))
        await self.cache.store(key, fallback_key, payload, ttl, self.resource.fallback_ttl)
        logger.info(f"[{self.name}] Stored {len(response.records)} records under {key} (TTL {ttl}s)")
        return payload

    def _records_from(self, outcome: UpstreamOutcome, dataset: str) -> list[dict[str, Any]]:
        if isinstance(outcome, Success):
            return outcome.records
        if isinstance(outcome, EmptyNotFound):
            return []
        if isinstance(outcome, RetryableFailure):
            raise UpstreamUnavailableError(dataset, outcome.status_code, self.retry.max_attempts)
        if isinstance(outcome, FatalFailure):
            if isinstance(outcome.error, UpstreamError):
                raise outcome.error
            raise UpstreamFatalError(repr(outcome.error), service_id=dataset)
        raise UpstreamFatalError(f"Unknown upstream outcome {outcome!r}", service_id=dataset)

    async def _recover(
        self, resolved: ResolvedQuery, fallback_key: str, error: Exception
    ) -> HandlerResult:
        fallback = await self.cache.read_fallback(fallback_key)
        if isinstance(fallback, dict) and isinstance(fallback.get("metadata"), dict):
            logger.info(f"[{self.name}] Serving stale {fallback_key}")
            payload = {
                **fallback,
                "metadata": {**fallback["metadata"], "status": "stale", "stale": True},
            }
            return HandlerResult(
                payload=payload,
                cache_status="HIT-STALE",
                cache_control=STALE_CACHE_CONTROL,
                stale=True,
            )

        logger.warning(f"[{self.name}] No fallback for {fallback_key}, serving degraded payload")
        payload = self.resource.degraded(resolved).to_payload()
        payload["metadata"]["lastUpdated"] = self._timestamp()
        return HandlerResult(
            payload=payload,
            cache_status="MISS",
            cache_control=DEGRADED_CACHE_CONTROL,
            degraded=True,
        )

    def _fresh(self, payload: dict[str, Any], status: str) -> HandlerResult:
        ttl = self.resource.ttl_for(len(payload.get("records") or []))
        return HandlerResult(
            payload=payload,
            cache_status=status,
            cache_control=fresh_cache_control(ttl),
            extra_headers={"CDN-Cache-Control": f"max-age={ttl}"},
        )

    def _timestamp(self) -> str:
        return self._clock().astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
