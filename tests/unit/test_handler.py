from __future__ import annotations

import asyncio

import pytest

from energy_api.api.handler import EndpointHandler
from energy_api.datasource.emissions import EmissionsResource
from energy_api.exceptions import ParameterValidationError
from tests.shared.fakes import (
    FailingStore,
    Upstream,
    build_cache_service,
    no_wait_retry,
    records_body,
)
from tests.shared.payloads import co2_record

RECORDS = [
    co2_record("2024-03-15T00:00:00", "DK1", 20),
    co2_record("2024-03-15T00:00:00", "DK2", 25),
]


def build_handler(clock, upstream: Upstream, **kwargs) -> EndpointHandler:
    return EndpointHandler(
        EmissionsResource(),
        kwargs.pop("cache_service", None) or build_cache_service(clock, **kwargs),
        upstream.client(),
        no_wait_retry(),
        clock,
    )


@pytest.mark.asyncio
async def test_miss_then_local_hit(clock) -> None:
    upstream = Upstream((200, records_body(RECORDS)))
    handler = build_handler(clock, upstream)

    first = await handler.handle({})
    second = await handler.handle({})

    assert first.cache_status == "MISS"
    assert second.cache_status == "HIT-LOCAL"
    assert upstream.calls == 1
    assert first.payload["records"][0]["CO2Emission"] == 22.5
    assert first.payload["metadata"]["status"] == "ok"
    assert first.payload["metadata"]["lastUpdated"] == "2024-03-15T12:30:00Z"
    assert first.cache_control == "public, s-maxage=300, stale-while-revalidate=600"
    assert first.headers()["CDN-Cache-Control"] == "max-age=300"
    assert "X-Degraded" not in first.headers()


@pytest.mark.asyncio
async def test_validation_fails_before_any_io(clock) -> None:
    upstream = Upstream((200, records_body(RECORDS)))
    handler = build_handler(clock, upstream)

    with pytest.raises(ParameterValidationError) as exc_info:
        await handler.handle({"region": "INVALID"})

    assert exc_info.value.code == "INVALID_REGION"
    assert upstream.calls == 0


@pytest.mark.asyncio
async def test_concurrent_identical_requests_make_one_upstream_call(clock) -> None:
    upstream = Upstream((200, records_body(RECORDS)))
    handler = build_handler(clock, upstream, grace_period=1.0)

    results = await asyncio.gather(*[handler.handle({"region": "dk1"}) for _ in range(50)])

    assert upstream.calls == 1
    assert len({id(r.payload) for r in results}) == 1


@pytest.mark.asyncio
async def test_empty_not_found_is_a_successful_empty_response(clock) -> None:
    upstream = Upstream((404, {}))
    handler = build_handler(clock, upstream)

    result = await handler.handle({})

    assert result.cache_status == "MISS"
    assert result.payload["records"] == []
    assert result.payload["metadata"]["dataPoints"] == 0
    assert result.payload["metadata"]["status"] == "ok"
    assert result.degraded is False


@pytest.mark.asyncio
async def test_outage_serves_stale_fallback(clock) -> None:
    upstream = Upstream((200, records_body(RECORDS)), (503, {}))
    service = build_cache_service(clock)
    handler = build_handler(clock, upstream, cache_service=service)

    await handler.handle({"date": "2024-03-14"})
    await service.drain()
    result = await handler.handle({"date": "2024-03-15"})

    assert result.cache_status == "HIT-STALE"
    assert result.payload["metadata"]["status"] == "stale"
    assert result.payload["metadata"]["stale"] is True
    assert result.payload["records"][0]["CO2Emission"] == 22.5
    headers = result.headers()
    assert headers["Cache-Control"] == "public, s-maxage=60"
    assert headers["Warning"] == '110 - "Response is stale"'
    assert headers["X-Degraded"] == "true"
    # 1 success + 3 attempts for the failed fetch
    assert upstream.calls == 4


@pytest.mark.asyncio
async def test_outage_without_fallback_is_degraded(clock) -> None:
    upstream = Upstream((500, {}))
    handler = build_handler(clock, upstream)

    result = await handler.handle({"region": "DK2"})

    assert result.cache_status == "MISS"
    assert result.degraded is True
    assert result.payload["records"] == []
    assert result.payload["metadata"]["status"] == "degraded"
    assert result.payload["metadata"]["region"] == "DK2"
    assert result.payload["metadata"]["message"]
    assert result.headers()["X-Degraded"] == "true"
    assert result.cache_control == "public, s-maxage=60, stale-while-revalidate=300"
    # fatal failures are not retried
    assert upstream.calls == 1


@pytest.mark.asyncio
async def test_failed_fetch_is_not_cached(clock) -> None:
    upstream = Upstream((500, {}), (200, records_body(RECORDS)))
    handler = build_handler(clock, upstream)

    degraded = await handler.handle({})
    recovered = await handler.handle({})

    assert degraded.degraded is True
    assert recovered.cache_status == "MISS"
    assert recovered.payload["metadata"]["dataPoints"] == 1


@pytest.mark.asyncio
async def test_shared_outage_does_not_fail_requests(clock) -> None:
    upstream = Upstream((200, records_body(RECORDS)))
    handler = build_handler(clock, upstream, shared=FailingStore())

    first = await handler.handle({})
    await handler.cache.drain()
    second = await handler.handle({})

    assert first.cache_status == "MISS"
    assert second.cache_status == "HIT-LOCAL"


@pytest.mark.asyncio
async def test_shared_hit_from_another_instance(clock) -> None:
    upstream = Upstream((200, records_body(RECORDS)))
    writer_service = build_cache_service(clock)
    writer = build_handler(clock, upstream, cache_service=writer_service)
    await writer.handle({})
    await writer_service.drain()

    reader_service = build_cache_service(clock, shared=writer_service.shared)
    reader = build_handler(clock, upstream, cache_service=reader_service)
    result = await reader.handle({})

    assert result.cache_status == "HIT-SHARED"
    assert upstream.calls == 1
