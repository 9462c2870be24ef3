from __future__ import annotations

from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI

from worktrackr.api.routes import billing, notifications, ping, tickets
from worktrackr.core.config import Settings, get_settings
from worktrackr.core.logging import configure_logging, init_tracer, shutdown_tracer
from worktrackr.tickets.billing import BillingQueueDeriver, BillingRates
from worktrackr.tickets.engine import TicketEngine
from worktrackr.tickets.notifications import (
    LoggingEmailDispatcher,
    NotificationDispatcher,
    NotificationService,
    WebhookNotificationDispatcher,
)
from worktrackr.tickets.repository import (
    DEFAULT_USERS,
    InMemoryBillingQueueRepository,
    InMemoryTicketRepository,
    InMemoryUserDirectory,
    PostgresBillingQueueRepository,
    PostgresTicketRepository,
    UserDirectory,
)
from worktrackr.tickets.scheduling import InMemoryBookingScheduler
from worktrackr.tickets.service import TicketService
from worktrackr.tickets.state import policy_for


def build_engine(settings: Settings) -> TicketEngine:
    rates = BillingRates(
        hourly_rate=settings.hourly_rate,
        tax_rate=settings.tax_rate,
        default_country=settings.default_country,
    )
    return TicketEngine(
        policy=policy_for(settings.strict_transitions),
        deriver=BillingQueueDeriver(rates),
        operations_email=settings.operations_email,
    )


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    if settings.notification_webhook_url:
        return WebhookNotificationDispatcher(
            settings.notification_webhook_url,
            token=settings.notification_webhook_token,
        )
    return LoggingEmailDispatcher()


async def build_ticket_service(
    settings: Settings,
    *,
    pool: asyncpg.Pool | None = None,
    users: UserDirectory | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> TicketService:
    """Wire the ticket service for the configured storage backend."""

    if settings.storage_backend == "postgres":
        if pool is None:
            raise ValueError("The postgres storage backend requires a connection pool")
        repository = PostgresTicketRepository(pool)
        billing_queue = PostgresBillingQueueRepository(pool)
        await repository.ensure_schema()
        await billing_queue.ensure_schema()
    else:
        repository = InMemoryTicketRepository()
        billing_queue = InMemoryBillingQueueRepository()

    return TicketService(
        repository,
        users=users or InMemoryUserDirectory(DEFAULT_USERS),
        billing_queue=billing_queue,
        notifications=NotificationService(dispatcher or build_dispatcher(settings)),
        engine=build_engine(settings),
        scheduler=InMemoryBookingScheduler(),
        raise_on_missing_reference=settings.raise_on_missing_reference,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    pool = None
    if settings.storage_backend == "postgres":
        pool = await asyncpg.create_pool(dsn=settings.postgres_dsn)
    dispatcher = build_dispatcher(settings)
    app.state.ticket_service = await build_ticket_service(settings, pool=pool, dispatcher=dispatcher)
    try:
        yield
    finally:
        if isinstance(dispatcher, WebhookNotificationDispatcher):
            await dispatcher.close()
        if pool is not None:
            await pool.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(billing.router)
    app.include_router(notifications.router)
    return app


app = create_app()
