"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan owns the EventHub: it is built once at startup,
stored on app.state and shut down (closing every open stream) when the
process stops. Nothing realtime lives in a module-level global.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ssehub import __version__
from ssehub.api import api_router
from ssehub.config import settings
from ssehub.realtime.backplane import Backplane, build_backplane
from ssehub.realtime.hub import EventHub

logger = structlog.get_logger()


def create_app(backplane: Optional[Backplane] = None) -> FastAPI:
    """Build and return the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle.

        Learn: Anything before `yield` runs at startup, after `yield` runs
        at shutdown. A Redis outage never blocks startup: the backplane
        keeps retrying in the background and publishes fall back to local
        delivery meanwhile.
        """
        logger.info(
            "ssehub.starting",
            version=__version__,
            environment=settings.environment,
            port=settings.port,
            instance_id=settings.instance_id,
        )

        hub = EventHub.from_settings(settings, backplane or build_backplane(settings))
        await hub.start()
        app.state.hub = hub

        yield

        logger.info("ssehub.shutdown", connections=hub.connection_count)
        await hub.shutdown()

    app = FastAPI(
        title="ssehub",
        description="Authenticated Server-Sent Events push hub",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → Security → RequestId → handler

    from ssehub.middleware.request_id import RequestIdMiddleware
    from ssehub.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: ssehub.main:app)
app = create_app()
