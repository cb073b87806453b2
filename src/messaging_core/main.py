"""
Application factory.

    uvicorn messaging_core.main:app

The lifespan wires the process-wide collaborators (engine, session factory,
event bus, profile resolver) into a MessagingService stored on `app.state`.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from messaging_core.api.v1 import api_router
from messaging_core.api.v1.error_handlers import register_exception_handlers
from messaging_core.config.settings import Settings, get_settings
from messaging_core.core.logging import RequestIDMiddleware, setup_logging
from messaging_core.database.session import build_engine, build_session_factory, create_schema
from messaging_core.profiles.directory import load_directories
from messaging_core.profiles.resolver import ProfileResolver
from messaging_core.realtime.bus import EventBus, RedisEventBus, build_event_bus
from messaging_core.services.messaging_service import MessagingService

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    resolver: ProfileResolver | None = None,
    bus: EventBus | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Defaults to `get_settings()`.
        resolver: Profile resolver; defaults to one loaded from PROFILE_DIRECTORY_FILE.
        bus: Event bus; defaults to `build_event_bus(settings)`.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)

        engine = build_engine(settings)
        if settings.AUTO_CREATE_SCHEMA:
            await create_schema(engine)

        event_bus = bus or build_event_bus(settings)
        if isinstance(event_bus, RedisEventBus):
            try:
                await event_bus.ping()
            except Exception:
                # Publishing failures are logged per event; sessions fall back to re-fetching.
                logger.error("app.redis_unreachable", exc_info=True)

        profile_resolver = resolver or ProfileResolver(*load_directories(settings.PROFILE_DIRECTORY_FILE))

        app.state.settings = settings
        app.state.engine = engine
        app.state.messaging_service = MessagingService(
            build_session_factory(engine),
            profile_resolver,
            event_bus,
            settings,
        )
        logger.info("app.started", extra={"env": settings.ENV, "database": engine.dialect.name})
        try:
            yield
        finally:
            await event_bus.close()
            await engine.dispose()
            logger.info("app.stopped")

    app = FastAPI(title="Messaging Core", lifespan=lifespan)
    app.add_middleware(RequestIDMiddleware)
    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
