from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from energy_api.services.cache import LocalCache
from energy_api.services.cache_service import CacheService
from energy_api.services.client import UpstreamClient
from energy_api.services.coalescer import RequestCoalescer
from energy_api.services.retry import RetryExecutor
from energy_api.services.shared_store import MemorySharedStore, SharedStore

BASE_URL = "https://upstream.test/dataset"
FIXED_NOW = datetime(2024, 3, 15, 12, 30, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced aware-UTC clock."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FailingStore(SharedStore):
    """Shared tier that is down."""

    def __init__(self):
        self.calls = 0

    async def get(self, key: str) -> Any | None:
        self.calls += 1
        raise ConnectionError("shared store down")

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.calls += 1
        raise ConnectionError("shared store down")

    async def close(self) -> None:
        return None


class Upstream:
    """
    Scripted upstream behind httpx.MockTransport.

    Each step is a (status, body) tuple or an exception; the last step
    repeats once the script is exhausted.
    """

    def __init__(self, *steps: tuple[int, Any] | Exception):
        self.steps = list(steps) or [(200, {"records": []})]
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        status, body = step
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, content=json.dumps(body).encode())

    @property
    def calls(self) -> int:
        return len(self.requests)

    def client(self, timeout: float = 10.0) -> UpstreamClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return UpstreamClient(BASE_URL, timeout=timeout, http_client=http_client)


def records_body(records: list[dict[str, Any]]) -> dict[str, Any]:
    return {"total": len(records), "records": records}


def build_cache_service(
    clock: Callable[[], datetime] | None = None,
    shared: SharedStore | None = None,
    grace_period: float = 0.0,
    max_size: int = 100,
) -> CacheService:
    clock = clock or FakeClock()
    return CacheService(
        local=LocalCache(max_size=max_size, clock=clock),
        shared=shared if shared is not None else MemorySharedStore(clock=clock),
        coalescer=RequestCoalescer(grace_period=grace_period),
    )


def no_wait_retry(max_attempts: int = 3) -> RetryExecutor:
    return RetryExecutor(max_attempts=max_attempts, base_delay=1.0, jitter=0.0, sleep=RecordingSleep())
