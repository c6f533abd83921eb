"""
Background sweep of expired local cache entries.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from energy_api.services.cache import LocalCache


class CacheJanitor:
    """
    Periodically drops expired entries from the local cache tier.

    Lookups already expire entries lazily; the sweep only keeps memory from
    holding keys nobody asks for again.
    """

    def __init__(self, cache: LocalCache, interval_seconds: int = 60):
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.scheduler = AsyncIOScheduler()
        self._is_running = False
        self.last_removed = 0

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        if self._is_running:
            logger.warning("[CacheJanitor] Already running")
            return
        if self.interval_seconds <= 0:
            logger.info("[CacheJanitor] Disabled (interval <= 0)")
            return

        self.scheduler.add_job(
            self.sweep,
            trigger="interval",
            seconds=self.interval_seconds,
            id="cache_sweep",
            name="Local Cache Sweep",
            replace_existing=True,
        )
        self.scheduler.start()
        self._is_running = True
        logger.info(f"[CacheJanitor] Sweeping every {self.interval_seconds}s")

    def stop(self) -> None:
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("[CacheJanitor] Stopped")

    async def sweep(self) -> int:
        removed = await self.cache.cleanup_expired()
        self.last_removed = removed
        if removed:
            logger.debug(f"[CacheJanitor] Removed {removed} expired entries")
        return removed

    def get_status(self) -> dict:
        return {
            "running": self._is_running,
            "interval_seconds": self.interval_seconds,
            "last_removed": self.last_removed,
        }
