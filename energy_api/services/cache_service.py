"""
CacheService - the per-process cache object handed to every endpoint.

Two tiers are consulted in order on read:
1. LocalCache: bounded in-process LRU, per-entry TTL
2. SharedStore: cross-instance key/value store (Redis in production)

Successful fetches are written to both tiers under the cache key and to the
shared tier under a coarser fallback key with a longer TTL. The fallback key
is never read on the normal lookup path, only after a failed fetch.

Shared-tier failures are logged and treated as misses; they never fail a
request and never replace an otherwise successful fetch.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Coroutine

from loguru import logger

from energy_api.services.cache import CacheEntry, LocalCache
from energy_api.services.coalescer import RequestCoalescer
from energy_api.services.errors import CacheUnavailableError
from energy_api.services.shared_store import SharedStore


@dataclass(frozen=True)
class CacheLookup:
    """Result from a tiered cache lookup."""

    payload: Any
    tier: str  # 'local' | 'shared'


class CacheService:
    """
    Tiered cache plus the request coalescer, constructed once per process.

    Usage:
        service = CacheService(LocalCache(), RedisSharedStore.from_url(url))

        hit = await service.lookup(key)
        if hit is None:
            payload = await service.coalescer.acquire(key, fetch)
            await service.store(key, fallback_key, payload, ttl=300, fallback_ttl=3600)
    """

    def __init__(
        self,
        local: LocalCache,
        shared: SharedStore,
        coalescer: RequestCoalescer | None = None,
        shared_timeout: float = 2.0,
    ):
        self.local = local
        self.shared = shared
        self.coalescer = coalescer or RequestCoalescer()
        self._shared_timeout = shared_timeout
        self._pending: set[asyncio.Task[None]] = set()
        self._shared_hits = 0
        self._shared_errors = 0

    # Read path

    async def lookup(self, key: str) -> CacheLookup | None:
        """Check the local tier, then the shared tier (backfilling local on a hit)."""
        entry = await self.local.get(key)
        if entry is not None:
            return CacheLookup(payload=entry.payload, tier="local")

        try:
            envelope = await self._shared_call("get", key, self.shared.get(key))
        except CacheUnavailableError as e:
            logger.warning(f"[CacheService] {e}, continuing with local tier only")
            return None

        if envelope is None:
            return None

        unwrapped = self._unwrap(key, envelope)
        if unwrapped is None:
            return None
        payload, remaining = unwrapped

        await self.local.set(key, payload, remaining)
        self._shared_hits += 1
        return CacheLookup(payload=payload, tier="shared")

    async def read_fallback(self, fallback_key: str) -> Any | None:
        """Read the last known good payload. Only used after a failed fetch."""
        try:
            envelope = await self._shared_call(
                "get", fallback_key, self.shared.get(fallback_key)
            )
        except CacheUnavailableError as e:
            logger.warning(f"[CacheService] {e}, no fallback available")
            return None

        if envelope is None:
            return None
        if isinstance(envelope, dict) and "payload" in envelope:
            return envelope["payload"]

        logger.warning(f"[CacheService] Ignoring malformed fallback entry {fallback_key}")
        return None

    # Write path

    async def store(
        self,
        key: str,
        fallback_key: str,
        payload: Any,
        ttl: int,
        fallback_ttl: int,
    ) -> None:
        """
        Write a fresh payload to both tiers.

        The local write completes before returning. The shared writes run as
        a detached task: their failures are logged, never raised.
        """
        await self.local.set(key, payload, timedelta(seconds=ttl))
        self._spawn(self._write_shared(key, fallback_key, payload, ttl, fallback_ttl))

    async def _write_shared(
        self,
        key: str,
        fallback_key: str,
        payload: Any,
        ttl: int,
        fallback_ttl: int,
    ) -> None:
        writes = (
            (key, ttl),
            (fallback_key, fallback_ttl),
        )
        for target, target_ttl in writes:
            envelope = self._wrap(payload, target_ttl)
            try:
                await self._shared_call(
                    "set", target, self.shared.set(target, envelope, target_ttl)
                )
            except CacheUnavailableError as e:
                logger.warning(f"[CacheService] {e}")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[CacheService] Background cache write failed: {error!r}")

    async def drain(self) -> None:
        """Wait for all pending background writes."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Shared tier plumbing

    async def _shared_call(self, operation: str, key: str, call: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=self._shared_timeout)
        except asyncio.TimeoutError as e:
            self._shared_errors += 1
            raise CacheUnavailableError(
                operation, key, f"timed out after {self._shared_timeout}s"
            ) from e
        except Exception as e:
            self._shared_errors += 1
            raise CacheUnavailableError(operation, key, repr(e)) from e

    def _wrap(self, payload: Any, ttl: int) -> dict[str, Any]:
        return {
            "payload": payload,
            "storedAt": self.local.now().timestamp(),
            "ttlSeconds": ttl,
        }

    def _unwrap(self, key: str, envelope: Any) -> tuple[Any, timedelta] | None:
        now = self.local.now()
        try:
            entry = CacheEntry(
                payload=envelope["payload"],
                stored_at=datetime.fromtimestamp(float(envelope["storedAt"]), tz=now.tzinfo),
                ttl=timedelta(seconds=float(envelope["ttlSeconds"])),
            )
        except (KeyError, TypeError, ValueError, OverflowError, OSError):
            logger.warning(f"[CacheService] Ignoring malformed shared entry {key}")
            return None

        remaining = entry.remaining(now)
        if not remaining:
            return None
        return entry.payload, remaining

    # Lifecycle and status

    async def close(self) -> None:
        await self.drain()
        await self.coalescer.cancel_all()
        await self.shared.close()

    def get_health_status(self) -> dict[str, Any]:
        return {
            "local": self.local.get_stats().to_dict(),
            "shared": {
                "backend": type(self.shared).__name__,
                "hits": self._shared_hits,
                "errors": self._shared_errors,
                "pending_writes": len(self._pending),
            },
            "coalescer": self.coalescer.get_stats().to_dict(),
        }
