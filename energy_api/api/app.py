"""FastAPI application serving the dataset resources."""

import hashlib
import json
from contextlib import asynccontextmanager
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from loguru import logger

from energy_api import __version__
from energy_api.api.handler import EndpointHandler, HandlerResult
from energy_api.datasource import RESOURCES
from energy_api.exceptions import (
    ParameterValidationError,
    parameter_error_handler,
    unexpected_error_handler,
)
from energy_api.scheduler import CacheJanitor
from energy_api.services.cache import LocalCache, utc_now
from energy_api.services.cache_service import CacheService
from energy_api.services.client import UpstreamClient
from energy_api.services.coalescer import RequestCoalescer
from energy_api.services.retry import RetryExecutor
from energy_api.services.shared_store import build_shared_store
from energy_api.settings import Settings, global_settings


def render_body(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def strong_etag(body: bytes) -> str:
    return f'"{hashlib.md5(body).hexdigest()}"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    if not if_none_match:
        return False
    candidates = [c.strip() for c in if_none_match.split(",")]
    return "*" in candidates or etag in candidates or f"W/{etag}" in candidates


class EnergyServer:
    """HTTP surface for the gateway: one GET route per resource plus /health."""

    def __init__(
        self,
        settings: Settings,
        cache_service: CacheService,
        upstream: UpstreamClient,
        retry: RetryExecutor,
        clock: Callable = utc_now,
    ):
        self.settings = settings
        self.cache_service = cache_service
        self.upstream = upstream
        self.janitor = CacheJanitor(cache_service.local, settings.cache_sweep_interval)
        self.handlers = {
            name: EndpointHandler(resource_cls(), cache_service, upstream, retry, clock)
            for name, resource_cls in RESOURCES.items()
        }

        self.app = FastAPI(
            title="Energy Data Gateway",
            version=__version__,
            lifespan=self.lifespan,
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["GET", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["X-Cache", "X-Degraded", "ETag"],
        )
        self.app.add_exception_handler(ParameterValidationError, parameter_error_handler)
        self.app.add_exception_handler(Exception, unexpected_error_handler)

        # Register routes
        for name in self.handlers:
            self.app.get(f"/{name}", name=name)(self._route(name))
        self.app.get("/health")(self.health_check)

    def _route(self, name: str):
        handler = self.handlers[name]

        async def endpoint(request: Request) -> Response:
            result = await handler.handle(dict(request.query_params))
            return self.respond(request, result)

        endpoint.__name__ = f"get_{name}"
        endpoint.__doc__ = f"Serve {handler.resource.label}."
        return endpoint

    def respond(self, request: Request, result: HandlerResult) -> Response:
        """Render a handler result, answering 304 when the client already has it."""
        body = render_body(result.payload)
        headers = result.headers()
        headers["ETag"] = strong_etag(body)

        if etag_matches(request.headers.get("if-none-match"), headers["ETag"]):
            return Response(status_code=304, headers=headers)
        return Response(content=body, media_type="application/json", headers=headers)

    async def health_check(self) -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse(
            {
                "status": "ok",
                "service": "energy-api",
                "version": __version__,
                "cache": self.cache_service.get_health_status(),
                "upstream": {"calls": self.upstream.calls},
                "scheduler": self.janitor.get_status(),
            },
            headers={"Cache-Control": "no-store"},
        )

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        logger.info(f"Starting energy gateway v{__version__}")
        self.janitor.start()
        try:
            yield
        finally:
            logger.info("Shutting down energy gateway...")
            self.janitor.stop()
            await self.cache_service.close()
            await self.upstream.close()
            logger.info("Energy gateway stopped")


def create_app(
    settings: Settings | None = None,
    *,
    cache_service: CacheService | None = None,
    upstream: UpstreamClient | None = None,
    retry: RetryExecutor | None = None,
    clock: Callable | None = None,
) -> FastAPI:
    """
    Build the application. No I/O happens here; connections open lazily.

    Args:
        settings: Configuration (defaults to the environment)
        cache_service: Pre-built cache service, e.g. with an in-memory shared tier
        upstream: Pre-built upstream client, e.g. over httpx.MockTransport
        retry: Pre-built retry executor, e.g. with a no-op sleep
        clock: Returns the current aware UTC datetime

    Returns:
        FastAPI app
    """
    settings = settings or global_settings

    if cache_service is None:
        cache_service = CacheService(
            local=LocalCache(
                max_size=settings.local_cache_max_entries,
                debug=settings.cache_debug,
            ),
            shared=build_shared_store(settings),
            coalescer=RequestCoalescer(
                grace_period=settings.coalesce_grace_period,
                debug=settings.cache_debug,
            ),
            shared_timeout=settings.shared_cache_timeout,
        )
    if upstream is None:
        upstream = UpstreamClient(
            settings.upstream_base_url,
            timeout=settings.upstream_timeout,
            user_agent=settings.upstream_user_agent,
        )
    if retry is None:
        retry = RetryExecutor(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            jitter=settings.retry_jitter,
        )

    server = EnergyServer(settings, cache_service, upstream, retry, clock or utc_now)
    return server.app
