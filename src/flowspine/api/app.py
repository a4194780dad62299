"""
FastAPI application factory.

``create_app()`` wires the container, routers, and error handlers into a
single ``FastAPI`` instance. The app owns the container it builds and
closes it on shutdown; a container passed in by the caller is left open.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from flowspine.api.deps import get_settings
from flowspine.api.errors import unhandled_exception_handler
from flowspine.container import Container, build_container
from flowspine.core.logging import configure_logging, get_logger
from flowspine.core.settings import FlowSettings

API_VERSION = "0.1.0"

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup / shutdown hooks."""
    logger.info("api_starting", version=app.version, database=app.state.settings.database_path)
    yield
    if app.state.owns_container:
        app.state.container.close()
    logger.info("api_stopped")


def create_app(
    settings: FlowSettings | None = None,
    container: Container | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Args:
        settings: Override settings (useful for testing). Defaults to the
            cached :func:`get_settings` instance.
        container: Pre-built container; one is built from ``settings`` when omitted.
    """
    settings = settings or (container.settings if container else get_settings())
    owns_container = container is None
    if container is None:
        configure_logging(level=settings.log_level, json_format=settings.log_json)
        container = build_container(settings)

    app = FastAPI(
        title="flowspine",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.settings = settings
    app.state.container = container
    app.state.owns_container = owns_container
    app.dependency_overrides[get_settings] = lambda: settings

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from flowspine.api.routers import dlq, runs, scheduler, workflows

    prefix = settings.api_prefix
    app.include_router(workflows.router, prefix=prefix, tags=["workflows"])
    app.include_router(runs.router, prefix=prefix, tags=["runs"])
    app.include_router(dlq.router, prefix=prefix, tags=["dlq"])
    app.include_router(scheduler.router, prefix=prefix, tags=["scheduler"])

    @app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        return {"status": "ok", "version": API_VERSION}

    return app
