"""
Service layer infrastructure - resilience patterns for upstream API calls.

Provides:
- UpstreamClient: single classified fetch against the dataset API
- RetryExecutor: bounded exponential backoff for 429/503
- RequestCoalescer: one in-flight fetch per cache key
- LocalCache / SharedStore / CacheService: two-tier cache with fallback keys
"""

from energy_api.services.errors import (
    ServiceError,
    UpstreamError,
    UpstreamUnavailableError,
    UpstreamFatalError,
    RequestTimeoutError,
    CacheError,
    CacheUnavailableError,
)
from energy_api.services.cache import LocalCache, CacheEntry, CacheStats
from energy_api.services.shared_store import (
    SharedStore,
    RedisSharedStore,
    MemorySharedStore,
    build_shared_store,
)
from energy_api.services.coalescer import RequestCoalescer
from energy_api.services.cache_service import CacheService, CacheLookup
from energy_api.services.client import (
    UpstreamClient,
    UpstreamQuery,
    UpstreamOutcome,
    Success,
    EmptyNotFound,
    RetryableFailure,
    FatalFailure,
)
from energy_api.services.retry import RetryExecutor

__all__ = [
    # Errors
    "ServiceError",
    "UpstreamError",
    "UpstreamUnavailableError",
    "UpstreamFatalError",
    "RequestTimeoutError",
    "CacheError",
    "CacheUnavailableError",
    # Cache
    "LocalCache",
    "CacheEntry",
    "CacheStats",
    "SharedStore",
    "RedisSharedStore",
    "MemorySharedStore",
    "build_shared_store",
    "CacheService",
    "CacheLookup",
    # Coalescer
    "RequestCoalescer",
    # Upstream
    "UpstreamClient",
    "UpstreamQuery",
    "UpstreamOutcome",
    "Success",
    "EmptyNotFound",
    "RetryableFailure",
    "FatalFailure",
    "RetryExecutor",
]
