"""FastAPI application entry point for the Skill Graph Engine.

This module initializes the FastAPI application with all routes, middleware,
and lifecycle management for the embedding, graph and search services.
"""

import time
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response

from skillgraph.api.dependencies import EngineServices
from skillgraph.api.routes import communities, embeddings, health, search, topology
from skillgraph.config import Settings, get_settings
from skillgraph.observability.logging import get_logger, request_context_scope, setup_logging
from skillgraph.store import build_store
from skillgraph.store.base import ArtifactStore

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ArtifactStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings (defaults to the cached settings)
        store: Pre-built artifact store; when omitted one is built from
            ``settings.database`` at startup

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(
            json_format=settings.observability.log_format == "json",
            log_level=settings.observability.log_level,
        )
        logger.info(
            "starting_application",
            app_name=settings.app_name,
            service_name=settings.observability.service_name,
            version=settings.app_version,
            environment=settings.env,
        )

        try:
            active_store = store if store is not None else build_store(settings)
            if active_store is None:
                logger.warning("store_not_configured")
            app.state.services = EngineServices.build(settings, active_store)
            logger.info("application_startup_complete")
        except Exception as e:
            logger.error("startup_failed", error=str(e), exc_info=True)
            raise

        yield

        logger.info("shutting_down_application")
        services: EngineServices = app.state.services
        try:
            await services.search.drain()
            if services.store is not None:
                await services.store.close()
            logger.info("application_shutdown_complete")
        except Exception as e:
            logger.error("shutdown_error", error=str(e), exc_info=True)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Semantic relationship engine for skill catalogs",
        docs_url="/docs" if settings.env != "production" else None,
        redoc_url="/redoc" if settings.env != "production" else None,
        lifespan=lifespan,
    )

    _add_middleware(app)

    app.include_router(health.router)
    app.include_router(embeddings.router, prefix="/api/v1")
    app.include_router(communities.router, prefix="/api/v1")
    app.include_router(topology.router, prefix="/api/v1")
    app.include_router(search.router, prefix="/api/v1")

    return app


def _add_middleware(app: FastAPI) -> None:
    """Add middleware to the application.

    Args:
        app: FastAPI application
    """

    @app.middleware("http")
    async def add_request_metadata(
        request: Request, call_next: "Callable[[Request], Awaitable[Response]]"
    ) -> Response:
        """Add request ID and track timing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.monotonic()
        request.state.request_id = request_id

        with request_context_scope(
            correlation_id=request_id,
            method=request.method,
            path=request.url.path,
        ):
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    "request_failed",
                    error=str(e),
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                    exc_info=True,
                )
                raise

            response.headers["X-Request-ID"] = request_id
            response.headers["X-API-Version"] = "v1"
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            )
            return response


def cli() -> None:
    """Command-line entry point."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "skillgraph.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=settings.workers if not settings.debug else 1,
    )


# Create the application instance
app = create_app()

if __name__ == "__main__":
    cli()
