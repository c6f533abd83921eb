"""
Shared key/value stores for the cross-instance cache tier.

Values are JSON documents. The store is a black box with last-write-wins
semantics; callers wrap every call in a timeout and treat failures as misses.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable

import redis.asyncio as aioredis
from loguru import logger

from energy_api.services.cache import utc_now
from energy_api.settings import Settings


class SharedStore(ABC):
    """get/set interface of the shared cache tier."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored document, or None if absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a JSON-serializable document with an expiry."""
        ...

    async def close(self) -> None:
        pass


class RedisSharedStore(SharedStore):
    """
    Redis-backed store shared by every instance.

    Keys are namespaced with ``prefix`` so several deployments can share
    one database.
    """

    def __init__(self, client: aioredis.Redis, prefix: str = "energy:"):
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "energy:") -> "RedisSharedStore":
        return cls(aioredis.from_url(url, decode_responses=True), prefix=prefix)

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(self._prefix + key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._redis.set(self._prefix + key, json.dumps(value), ex=ttl_seconds)

    async def close(self) -> None:
        await self._redis.aclose()


class MemorySharedStore(SharedStore):
    """
    In-process stand-in for the shared tier.

    Used for single-instance deployments and tests. Documents are kept
    serialized so readers never share objects with writers.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._data: dict[str, tuple[str, datetime]] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            raw, expires_at = item
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        async with self._lock:
            expires_at = self._clock() + timedelta(seconds=ttl_seconds)
            self._data[key] = (json.dumps(value), expires_at)

    def keys(self) -> list[str]:
        return list(self._data.keys())


def build_shared_store(settings: Settings) -> SharedStore:
    """Pick the shared store implementation from configuration."""
    if settings.shared_cache_url:
        logger.info("Shared cache tier: Redis")
        return RedisSharedStore.from_url(
            settings.shared_cache_url, prefix=settings.shared_cache_prefix
        )

    logger.warning(
        "SHARED_CACHE_URL not set, shared cache tier is process-local "
        "(no cross-instance hits)"
    )
    return MemorySharedStore()
