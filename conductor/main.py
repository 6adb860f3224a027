from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from conductor.api.errors import register_exception_handlers
from conductor.api.routes import ping, support
from conductor.core.config import Settings, get_settings
from conductor.core.logging import configure_logging, init_tracer, shutdown_tracer
from conductor.dependencies.auth import StaticUserDirectory
from conductor.support.messaging import TicketMessagingService
from conductor.support.metrics import SupportMetricsAggregator
from conductor.support.notifications import (
    LoggingNotifier,
    MailgunNotifier,
    NotificationDispatcher,
    Notifier,
    TicketNotifications,
)
from conductor.support.repository import TicketRepository
from conductor.support.service import TicketService

logger = logging.getLogger(__name__)


def _to_async_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses an asyncio driver."""

    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    if dsn.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + dsn[len("sqlite://") :]
    return dsn


def build_notifier(settings: Settings) -> Notifier:
    if settings.mailgun_configured:
        return MailgunNotifier(
            api_key=settings.mailgun_api_key or "",
            domain=settings.mailgun_domain or "",
            sender=settings.mail_sender,
            base_url=settings.mailgun_base_url,
        )
    return LoggingNotifier()


def install_support_services(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings,
    engine: AsyncEngine | None = None,
    notifier: Notifier | None = None,
) -> TicketRepository:
    """Wire the repository, notifications and services onto ``app.state``."""

    repository = TicketRepository(session_factory, engine=engine)
    directory = StaticUserDirectory()
    dispatcher = NotificationDispatcher(notifier or build_notifier(settings))
    notifications = TicketNotifications(
        dispatcher,
        directory=directory,
        client_url=settings.client_url,
        team_emails=settings.support_team_emails,
    )

    app.state.user_directory = directory
    app.state.notification_dispatcher = dispatcher
    app.state.ticket_service = TicketService(repository, notifications=notifications, directory=directory)
    app.state.messaging_service = TicketMessagingService(repository, notifications=notifications)
    app.state.metrics_aggregator = SupportMetricsAggregator(repository)
    return repository


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider

    notifier = build_notifier(settings)
    db_engine: AsyncEngine | None = None
    try:
        db_engine = create_async_engine(_to_async_dsn(settings.database_dsn), future=True)
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        repository = install_support_services(
            app, session_factory, settings=settings, engine=db_engine, notifier=notifier
        )
        await repository.ensure_schema()
    except Exception:
        logger.exception("Support services could not be initialised")
        app.state.ticket_service = None
        app.state.messaging_service = None
        app.state.metrics_aggregator = None
        if db_engine is not None:
            await db_engine.dispose()
            db_engine = None
    try:
        yield
    finally:
        dispatcher = getattr(app.state, "notification_dispatcher", None)
        if dispatcher is not None:
            await dispatcher.drain()
        if isinstance(notifier, MailgunNotifier):
            await notifier.aclose()
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(ping.router)
    app.include_router(support.router)
    return app


app = create_app()
