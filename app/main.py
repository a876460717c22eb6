import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.routes import categories, health, notifications, tickets
from app.core.config import Settings, get_settings
from app.core.logging import configure_logging, init_tracer, shutdown_tracer
from app.services.postgres import TicketDatabase
from app.tickets.engine import TicketLifecycleEngine
from app.tickets.memory import (
    InMemoryCategoryRegistry,
    InMemoryIdentityProvider,
    InMemoryNotificationSink,
    InMemoryTicketStore,
)
from app.tickets.models import Role
from app.tickets.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


def build_memory_engine(
    settings: Settings,
) -> tuple[TicketLifecycleEngine, InMemoryIdentityProvider, InMemoryCategoryRegistry, InMemoryNotificationSink]:
    """Wire the engine to in-process collaborators (development and tests)."""

    identity = InMemoryIdentityProvider()
    categories_registry = InMemoryCategoryRegistry()
    sink = InMemoryNotificationSink()
    dispatcher = NotificationDispatcher(
        identity,
        categories_registry,
        sink,
        escalation_role=Role(settings.escalation_role),
        notify_category_watchers=settings.notify_category_watchers,
    )
    engine = TicketLifecycleEngine(InMemoryTicketStore(), identity, categories_registry, dispatcher)
    return engine, identity, categories_registry, sink


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    database = None
    if settings.storage_backend == "memory":
        engine, identity, categories_registry, sink = build_memory_engine(settings)
        app.state.ticket_engine = engine
        app.state.identity_provider = identity
        app.state.category_registry = categories_registry
        app.state.notification_feed = sink
    else:
        database = await TicketDatabase.from_settings(settings).connect()
        dispatcher = NotificationDispatcher(
            database.users,
            database.categories,
            database.notifications,
            escalation_role=Role(settings.escalation_role),
            notify_category_watchers=settings.notify_category_watchers,
        )
        app.state.ticket_engine = TicketLifecycleEngine(
            database.tickets, database.users, database.categories, dispatcher
        )
        app.state.identity_provider = database.users
        app.state.category_registry = database.categories
        app.state.notification_feed = database.notifications

    logger.info("Ticket engine ready (storage backend: %s)", settings.storage_backend)
    try:
        yield
    finally:
        if database is not None:
            await database.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(health.router)
    app.include_router(categories.router)
    app.include_router(notifications.router)
    app.include_router(tickets.router)
    return app


app = create_app()
