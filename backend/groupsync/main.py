"""Groupsync API: FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map GroupSyncError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database, notification sink and event dispatcher built once in the lifespan;
      the dispatcher is drained before the database is disposed
    - Outbox events left over by a previous process are recovered at startup

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Dispatcher on app.state: request dependencies hand it to services as their publisher
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from groupsync.api.error_handlers import register_error_handlers
from groupsync.api.routes import assessment_events, changes, groups, health, registrations
from groupsync.config import Settings, get_settings
from groupsync.infrastructure.database import init_db
from groupsync.infrastructure.notification_sink import (
    LoggingNotificationSink,
    WebhookNotificationSink,
)
from groupsync.infrastructure.observability import setup_logging
from groupsync.services.dispatcher import build_dispatcher

logger = logging.getLogger(__name__)


def build_sink(settings: Settings):
    if settings.notifications_enabled and settings.notification_subscribers:
        return WebhookNotificationSink(
            settings.notification_subscribers, settings.notification_timeout_seconds,
        )
    return LoggingNotificationSink()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    manager = init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    sink = build_sink(settings)
    app.state.dispatcher = build_dispatcher(settings, manager.session, sink)
    await app.state.dispatcher.recover()
    logger.info("Groupsync API started")
    yield
    logger.info("Groupsync API shutting down")
    await app.state.dispatcher.stop()
    await sink.aclose()
    await manager.dispose()


app = FastAPI(
    title="Groupsync API", version="1.0.0", lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes: explicit registration
app.include_router(health.router)
app.include_router(groups.router)
app.include_router(registrations.router)
app.include_router(changes.router)
app.include_router(assessment_events.router)

register_error_handlers(app)
