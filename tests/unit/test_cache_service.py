from __future__ import annotations

from datetime import timedelta

import pytest

from energy_api.services.cache import LocalCache
from energy_api.services.cache_service import CacheService
from energy_api.services.shared_store import MemorySharedStore
from tests.shared.fakes import FailingStore, build_cache_service


@pytest.mark.asyncio
async def test_store_writes_local_and_both_shared_keys(clock) -> None:
    service = build_cache_service(clock)

    await service.store("emissions:DK1:x", "emissions:DK1:latest", {"records": []}, 300, 3600)
    await service.drain()

    assert (await service.lookup("emissions:DK1:x")).tier == "local"
    assert sorted(service.shared.keys()) == ["emissions:DK1:latest", "emissions:DK1:x"]
    assert await service.read_fallback("emissions:DK1:latest") == {"records": []}


@pytest.mark.asyncio
async def test_shared_hit_backfills_local_with_remaining_ttl(clock) -> None:
    shared = MemorySharedStore(clock=clock)
    writer = CacheService(LocalCache(clock=clock), shared)
    await writer.store("k", "k:latest", {"v": 1}, 300, 3600)
    await writer.drain()

    clock.advance(100)
    reader = CacheService(LocalCache(clock=clock), shared)
    hit = await reader.lookup("k")

    assert hit is not None
    assert hit.tier == "shared"
    assert hit.payload == {"v": 1}
    entry = await reader.local.get("k")
    assert entry.ttl == timedelta(seconds=200)

    assert (await reader.lookup("k")).tier == "local"


@pytest.mark.asyncio
async def test_shared_entry_past_its_ttl_is_a_miss(clock) -> None:
    shared = MemorySharedStore(clock=clock)
    writer = CacheService(LocalCache(clock=clock), shared)
    await writer.store("k", "k:latest", {"v": 1}, 300, 3600)
    await writer.drain()

    clock.advance(301)
    reader = CacheService(LocalCache(clock=clock), shared)

    assert await reader.lookup("k") is None
    assert await reader.read_fallback("k:latest") == {"v": 1}


@pytest.mark.asyncio
async def test_shared_outage_degrades_to_local_only(clock) -> None:
    store = FailingStore()
    service = build_cache_service(clock, shared=store)

    assert await service.lookup("k") is None
    await service.store("k", "k:latest", {"v": 1}, 300, 3600)
    await service.drain()

    assert (await service.lookup("k")).payload == {"v": 1}
    assert await service.read_fallback("k:latest") is None
    assert service.get_health_status()["shared"]["errors"] == 4


@pytest.mark.asyncio
async def test_malformed_shared_entry_is_ignored(clock) -> None:
    shared = MemorySharedStore(clock=clock)
    await shared.set("k", "not an envelope", 300)
    service = CacheService(LocalCache(clock=clock), shared)

    assert await service.lookup("k") is None
