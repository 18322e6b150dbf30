"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown: it validates config, owns
the Redis and HTTP clients, and builds the Services bundle every route
reads from app.state.

Tests pass a prebuilt Services bundle to create_app() and skip all of it.
"""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI

from itemwire import __version__
from itemwire.api import api_router
from itemwire.config import Settings, settings as default_settings
from itemwire.services import Services, build_services

logger = structlog.get_logger()


def _lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle.

        Learn: Anything before `yield` runs at startup, after `yield`
        runs at shutdown. Missing required config raises here, so the
        server never accepts a connection it can't serve.
        """
        if app.state.services is not None:
            yield
            return

        settings.validate_required()
        logger.info(
            "itemwire.starting",
            version=__version__,
            environment=settings.environment,
            topic_key=settings.topic_key_name,
            store=settings.store_backend,
            transport=settings.transport,
        )

        redis: Optional[aioredis.Redis] = None
        if settings.store_backend == "redis":
            redis = aioredis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            try:
                await redis.ping()
                logger.info("itemwire.redis_connected", url=settings.redis_url)
            except Exception as e:
                # Operations fail with StoreUnavailable until Redis is back
                logger.warning("itemwire.redis_unavailable", error=str(e))

        http_client: Optional[httpx.AsyncClient] = None
        if settings.transport == "connections_api":
            http_client = httpx.AsyncClient(timeout=settings.send_timeout_seconds)

        app.state.services = build_services(
            settings, redis=redis, http_client=http_client
        )

        yield

        logger.info("itemwire.shutdown")
        app.state.services = None
        if http_client is not None:
            await http_client.aclose()
        if redis is not None:
            await redis.aclose()

    return lifespan


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or default_settings
    app = FastAPI(
        title="itemwire",
        description="Real-time item change notifications over WebSockets",
        version=__version__,
        lifespan=_lifespan(settings),
    )
    app.state.services = services

    from itemwire.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route
    from itemwire.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: itemwire.main:app)
app = create_app()
