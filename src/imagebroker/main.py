"""FastAPI application entry-point.

Assembles routers, middleware, exception handlers, and lifecycle hooks.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from imagebroker.adapters.inbound.rest.routers import (
    health_router,
    images_router,
    providers_router,
    users_router,
)
from imagebroker.adapters.inbound.sse import drain_background_runs
from imagebroker.config import Settings, get_settings
from imagebroker.dependencies import Container, build_container, set_container
from imagebroker.seed import seed_providers
from imagebroker.shared.errors import register_exception_handlers
from imagebroker.shared.middleware import AccessLogMiddleware, RequestIdMiddleware
from imagebroker.shared.observability import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — startup & shutdown hooks."""
    settings: Settings = app.state.settings
    container: Container = app.state.container
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.is_production,
    )
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        storage=settings.storage_backend,
        adapter_mode=settings.generation_adapter_mode,
        priority=settings.provider_priority,
    )

    await container.prepare_storage()
    if settings.storage_backend == "memory" and not await container.catalog.list_all():
        await seed_providers(container.provider_repo)

    yield

    await drain_background_runs(settings.shutdown_drain_seconds)
    await container.aclose()
    logger.info("application_shutdown")


def create_app(settings: Settings | None = None, *, container: Container | None = None) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance."""
    settings = settings or (container.settings if container else get_settings())
    container = container or build_container(settings)
    set_container(container)

    app = FastAPI(
        title="Image Provider Broker",
        description=(
            "Brokers image-generation requests across interchangeable providers, "
            "failing over on exhaustion or error and streaming progress to the caller."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.container = container

    # ── Middleware (order matters: last added = outermost) ────
    allow_all_origins = "*" in settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if allow_all_origins else settings.cors_origins,
        allow_origin_regex=".*" if allow_all_origins else None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Exception handlers ───────────────────────────────────
    register_exception_handlers(app)

    # ── REST routers (versioned) ─────────────────────────────
    api_v1 = "/api/v1"
    app.include_router(health_router, prefix=api_v1)
    app.include_router(images_router, prefix=api_v1)
    app.include_router(providers_router, prefix=api_v1)
    app.include_router(users_router, prefix=api_v1)

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "imagebroker.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
    )
