from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Mapping, Protocol

from .models import Ticket, User

logger = logging.getLogger(__name__)

DEFAULT_BOOKING_TIME = "09:00"
DEFAULT_DURATION_MINUTES = 60


@dataclass(slots=True, frozen=True)
class Booking:
    """Calendar entry mirroring a scheduled ticket."""

    id: str
    ticket_id: str
    customer_name: str
    customer_phone: str
    customer_email: str
    service: str
    date: date
    time: str
    duration: int
    location: str
    priority: str
    status: str
    notes: str
    assigned_to: str
    metadata: Mapping[str, str] = field(default_factory=dict)


class Scheduler(Protocol):
    async def create_entry(self, ticket: Ticket, users: Mapping[str, User]) -> Booking | None:
        ...

    async def update_entry(self, ticket: Ticket, users: Mapping[str, User]) -> Booking | None:
        ...


def parse_scheduled_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _assignee_name(ticket: Ticket, users: Mapping[str, User]) -> str:
    user = users.get(ticket.assigned_to) if ticket.assigned_to else None
    return user.name if user is not None else "Unassigned"


class InMemoryBookingScheduler:
    """Keeps one booking per scheduled ticket."""

    def __init__(self) -> None:
        self._bookings: dict[str, Booking] = {}

    def bookings(self) -> list[Booking]:
        return sorted(self._bookings.values(), key=lambda booking: booking.date)

    async def create_entry(self, ticket: Ticket, users: Mapping[str, User]) -> Booking | None:
        scheduled = parse_scheduled_date(ticket.scheduled_date)
        if scheduled is None:
            logger.error("Ticket %s has an invalid scheduled_date %r", ticket.id, ticket.scheduled_date)
            return None

        contact = ticket.contact_details
        booking = Booking(
            id=f"BK-{ticket.id}",
            ticket_id=ticket.id,
            customer_name=(contact and (contact.company_name or contact.name)) or "Unknown Customer",
            customer_phone=(contact and contact.phone) or "",
            customer_email=(contact and contact.email) or "",
            service=ticket.title,
            date=scheduled,
            time=DEFAULT_BOOKING_TIME,
            duration=ticket.scheduled_duration_mins or DEFAULT_DURATION_MINUTES,
            location=ticket.location or "On-site",
            priority=ticket.priority.value,
            status="scheduled",
            notes=ticket.description,
            assigned_to=_assignee_name(ticket, users),
            metadata={"sector": ticket.sector or "General", "reference": ticket.id},
        )
        self._bookings[ticket.id] = booking
        logger.info("Booking %s created for %s", booking.id, booking.date.isoformat())
        return booking

    async def update_entry(self, ticket: Ticket, users: Mapping[str, User]) -> Booking | None:
        existing = self._bookings.get(ticket.id)
        if existing is None:
            return await self.create_entry(ticket, users)

        scheduled = parse_scheduled_date(ticket.scheduled_date)
        if scheduled is None:
            logger.error("Ticket %s has an invalid scheduled_date %r", ticket.id, ticket.scheduled_date)
            return existing

        booking = replace(
            existing,
            date=scheduled,
            duration=ticket.scheduled_duration_mins or existing.duration,
            notes=ticket.description,
            assigned_to=_assignee_name(ticket, users),
            priority=ticket.priority.value,
        )
        self._bookings[ticket.id] = booking
        return booking
