from __future__ import annotations

from datetime import timedelta

import pytest

from energy_api.scheduler import CacheJanitor
from energy_api.services.cache import LocalCache


@pytest.mark.asyncio
async def test_sweep_removes_expired_entries(clock) -> None:
    cache = LocalCache(clock=clock)
    await cache.set("old", 1, timedelta(seconds=5))
    await cache.set("new", 2, timedelta(seconds=500))
    janitor = CacheJanitor(cache, interval_seconds=60)

    clock.advance(10)

    assert await janitor.sweep() == 1
    assert janitor.get_status()["last_removed"] == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_start_and_stop_register_interval_job(clock) -> None:
    janitor = CacheJanitor(LocalCache(clock=clock), interval_seconds=60)

    janitor.start()
    try:
        assert janitor.is_running
        assert janitor.scheduler.get_job("cache_sweep") is not None
    finally:
        janitor.stop()

    assert not janitor.is_running


def test_zero_interval_disables_sweep(clock) -> None:
    janitor = CacheJanitor(LocalCache(clock=clock), interval_seconds=0)

    janitor.start()

    assert not janitor.is_running
    assert janitor.scheduler.get_jobs() == []
