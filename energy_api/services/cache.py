"""
LocalCache - in-process LRU cache with per-entry TTL.

Features:
- Bounded size with least-recently-used eviction
- Each entry carries its own TTL
- Lazy expiry: an expired entry is dropped when it is looked up
- Optional sweep via cleanup_expired() (see energy_api.scheduler)
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from loguru import logger

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    """A single cache entry. Replaced on update, never mutated."""

    payload: Any
    stored_at: datetime
    ttl: timedelta

    @property
    def expires_at(self) -> datetime:
        return self.stored_at + self.ttl

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now > self.expires_at

    def remaining(self, now: datetime) -> timedelta:
        """Time left before expiry (never negative)."""
        return max(self.expires_at - now, timedelta(0))


class LocalCache:
    """
    Per-process cache tier.

    Usage:
        cache = LocalCache(max_size=100)

        entry = await cache.get("emissions:DK1:...")
        if entry:
            return entry.payload

        payload = await produce()
        await cache.set("emissions:DK1:...", payload, ttl=timedelta(minutes=5))
    """

    def __init__(
        self,
        max_size: int = 100,
        clock: Clock = utc_now,
        debug: bool = False,
    ):
        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_size = max_size
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def get(self, key: str) -> CacheEntry | None:
        """
        Get an entry from cache.

        Returns the entry if present and within its TTL, None otherwise.
        A hit marks the key as most recently used.
        """
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key}")
                return None

            if entry.is_expired(self._clock()):
                del self._memory[key]
                self._stats.misses += 1
                self._stats.expirations += 1
                self._log(f"EXPIRED: {key}")
                return None

            self._memory.move_to_end(key)
            self._stats.hits += 1
            self._log(f"HIT: {key}")
            return entry

    async def set(self, key: str, payload: Any, ttl: timedelta) -> CacheEntry:
        """
        Store payload under key, replacing any previous entry.

        Args:
            key: Cache key
            payload: Data to cache (treated as immutable)
            ttl: Time to live for this entry
        """
        entry = CacheEntry(payload=payload, stored_at=self._clock(), ttl=ttl)

        async with self._lock:
            if key in self._memory:
                self._memory.move_to_end(key)
            self._memory[key] = entry

            while len(self._memory) > self._max_size:
                evicted, _ = self._memory.popitem(last=False)
                self._stats.evictions += 1
                self._log(f"EVICT: {evicted}")

            self._log(f"SET: {key} (TTL: {ttl.total_seconds()}s)")
        return entry

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        async with self._lock:
            if key in self._memory:
                del self._memory[key]
                self._log(f"DELETE: {key}")
                return True
            return False

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._memory[key]

            if expired_keys:
                self._stats.expirations += len(expired_keys)
                self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

            return len(expired_keys)

    def __len__(self) -> int:
        return len(self._memory)

    def now(self) -> datetime:
        return self._clock()

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[LocalCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
