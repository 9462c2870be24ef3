from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from worktrackr.tickets.models import User, UserRole
from worktrackr.tickets.notifications import LoggingEmailDispatcher, NotificationService
from worktrackr.tickets.repository import (
    InMemoryBillingQueueRepository,
    InMemoryTicketRepository,
    InMemoryUserDirectory,
)
from worktrackr.tickets.scheduling import InMemoryBookingScheduler
from worktrackr.tickets.service import TicketService

T0 = datetime(2025, 9, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


ADMIN = User(id="u-admin", name="Ada Admin", email="ada@example.com", role=UserRole.ADMIN)
MANAGER = User(id="u-manager", name="Max Manager", email="max@example.com", role=UserRole.MANAGER)
TECH = User(id="u-tech", name="Tess Tech", email="tess@example.com", role=UserRole.STAFF)
OTHER_TECH = User(id="u-tech-2", name="Omar Tech", email="omar@example.com", role=UserRole.STAFF)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def users_map() -> dict[str, User]:
    return {user.id: user for user in (ADMIN, MANAGER, TECH, OTHER_TECH)}


@pytest.fixture
def user_directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory([ADMIN, MANAGER, TECH, OTHER_TECH])


@pytest.fixture
def billing_queue() -> InMemoryBillingQueueRepository:
    return InMemoryBillingQueueRepository()


@pytest.fixture
def ticket_repository() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def scheduler() -> InMemoryBookingScheduler:
    return InMemoryBookingScheduler()


@pytest.fixture
def make_service(clock, user_directory, billing_queue, ticket_repository, scheduler):
    def factory(**overrides) -> TicketService:
        options = {
            "users": user_directory,
            "billing_queue": billing_queue,
            "notifications": NotificationService(LoggingEmailDispatcher()),
            "scheduler": scheduler,
            "clock": clock,
        }
        options.update(overrides)
        return TicketService(ticket_repository, **options)

    return factory
