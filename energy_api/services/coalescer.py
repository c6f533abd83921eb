"""
RequestCoalescer - merges concurrent identical requests into one fetch.

When multiple callers ask for the same cache key while a fetch is in
flight, only one fetch runs and every caller receives its result (or its
exception). The in-flight entry lingers for a short grace period after the
fetch settles so near-simultaneous arrivals still share it.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestCoalescer:
    """
    Fan-in for concurrent async fetches keyed by cache key.

    Never retries and never caches errors: a failure is delivered to every
    waiter of that fetch and the next acquire after the grace period starts
    a new one.

    Usage:
        coalescer = RequestCoalescer(grace_period=0.1)

        payload = await coalescer.acquire(
            key=cache_key,
            factory=lambda: fetch_and_aggregate(query),
        )
    """

    def __init__(self, grace_period: float = 0.1, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._lock = asyncio.Lock()
        self._grace_period = grace_period
        self._debug = debug
        self._stats = CoalescerStats()

    async def acquire(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Return the result of the in-flight fetch for key, starting one if needed.

        Args:
            key: Cache key identifying the logical query
            factory: Zero-argument coroutine function performing the fetch

        Returns:
            Result of factory() (shared with all concurrent callers)
        """
        async with self._lock:
            task = self._in_flight.get(key)
            if task is not None:
                self._stats.coalesced += 1
                self._log(f"JOIN: {key}")
            else:
                self._stats.total += 1
                self._log(f"NEW: {key}")
                task = asyncio.create_task(self._run(factory))
                task.add_done_callback(
                    lambda done, key=key: self._on_settled(key, done)
                )
                self._in_flight[key] = task

        # One waiter giving up must not cancel the fetch for the others
        return await asyncio.shield(task)

    async def _run(self, factory: Callable[[], Awaitable[T]]) -> T:
        return await factory()

    def _on_settled(self, key: str, task: asyncio.Task[Any]) -> None:
        if not task.cancelled() and task.exception() is not None:
            self._stats.failures += 1
            self._log(f"FAILED: {key}: {task.exception()}")
        else:
            self._log(f"DONE: {key}")

        if self._grace_period <= 0:
            self._release(key, task)
            return
        asyncio.get_running_loop().call_later(
            self._grace_period, self._release, key, task
        )

    def _release(self, key: str, task: asyncio.Task[Any]) -> None:
        # A newer fetch may already own the key
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
            self._log(f"RELEASE: {key}")

    async def cancel_all(self) -> int:
        """Cancel all in-flight fetches."""
        async with self._lock:
            count = len(self._in_flight)
            for task in self._in_flight.values():
                task.cancel()
            self._in_flight.clear()
            if count:
                logger.info(f"[Coalescer] {count} in-flight requests cancelled")
            return count

    def in_flight_count(self) -> int:
        """Get number of registered (in-flight or settling) requests."""
        return len(self._in_flight)

    def in_flight_keys(self) -> list[str]:
        return list(self._in_flight.keys())

    def get_stats(self) -> "CoalescerStats":
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Coalescer] {message}")


class CoalescerStats:
    """Statistics for request coalescing."""

    def __init__(self):
        self.total: int = 0  # Fetches actually started
        self.coalesced: int = 0  # Callers that joined an existing fetch
        self.failures: int = 0  # Fetches that settled with an error
        self.in_flight: int = 0

    @property
    def coalesce_rate(self) -> float:
        total = self.total + self.coalesced
        if total == 0:
            return 0.0
        return self.coalesced / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_fetches": self.total,
            "coalesced": self.coalesced,
            "failures": self.failures,
            "in_flight": self.in_flight,
            "coalesce_rate": f"{self.coalesce_rate:.2%}",
        }
