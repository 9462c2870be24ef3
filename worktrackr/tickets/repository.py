from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable, Mapping, Protocol, Sequence

import asyncpg
from pydantic import TypeAdapter

from .models import BillingQueueItem, Ticket, User, UserRole
from .state import TicketStatus

_TICKET_ADAPTER = TypeAdapter(Ticket)
_BILLING_ADAPTER = TypeAdapter(BillingQueueItem)


class TicketRepository(Protocol):
    async def get(self, ticket_id: str) -> Ticket | None:
        ...

    async def save(self, ticket: Ticket) -> None:
        ...

    async def list(self, *, status: TicketStatus | None = None) -> list[Ticket]:
        ...


class BillingQueueRepository(Protocol):
    async def append(self, item: BillingQueueItem) -> None:
        ...

    async def list(self) -> list[BillingQueueItem]:
        ...

    async def remove(self, queue_item_id: str) -> bool:
        ...

    async def annotate(self, queue_item_id: str, notes: str | None) -> BillingQueueItem | None:
        ...


class UserDirectory(Protocol):
    async def get(self, user_id: str) -> User | None:
        ...

    async def list(self) -> list[User]:
        ...


class InMemoryTicketRepository:
    """Dictionary backed ticket store, newest ticket first on listing."""

    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}

    async def get(self, ticket_id: str) -> Ticket | None:
        return self._tickets.get(ticket_id)

    async def save(self, ticket: Ticket) -> None:
        self._tickets[ticket.id] = ticket

    async def list(self, *, status: TicketStatus | None = None) -> list[Ticket]:
        tickets = [ticket for ticket in self._tickets.values() if status is None or ticket.status == status]
        return sorted(tickets, key=lambda ticket: ticket.created_at, reverse=True)


class InMemoryBillingQueueRepository:
    def __init__(self) -> None:
        self._items: dict[str, BillingQueueItem] = {}

    async def append(self, item: BillingQueueItem) -> None:
        self._items.setdefault(item.queue_item_id, item)

    async def list(self) -> list[BillingQueueItem]:
        return sorted(self._items.values(), key=lambda item: item.added_to_queue_at)

    async def remove(self, queue_item_id: str) -> bool:
        return self._items.pop(queue_item_id, None) is not None

    async def annotate(self, queue_item_id: str, notes: str | None) -> BillingQueueItem | None:
        item = self._items.get(queue_item_id)
        if item is None:
            return None
        annotated = replace(item, processing_notes=notes)
        self._items[queue_item_id] = annotated
        return annotated


class InMemoryUserDirectory:
    def __init__(self, users: Iterable[User] = ()) -> None:
        self._users = {user.id: user for user in users}

    async def get(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def list(self) -> list[User]:
        return list(self._users.values())

    def add(self, user: User) -> None:
        self._users[user.id] = user


DEFAULT_USERS: Sequence[User] = (
    User(id="1", name="John Admin", email="admin@worktrackr.com", role=UserRole.ADMIN),
    User(id="2", name="Sarah Manager", email="sarah@worktrackr.com", role=UserRole.MANAGER),
    User(id="3", name="Mike Technician", email="mike@worktrackr.com", role=UserRole.STAFF),
    User(id="4", name="Lisa Maintenance", email="lisa@worktrackr.com", role=UserRole.STAFF),
    User(id="5", name="David Inspector", email="david@worktrackr.com", role=UserRole.STAFF),
)


def _load(adapter: TypeAdapter, document: Any) -> Any:
    if isinstance(document, (str, bytes)):
        return adapter.validate_json(document)
    return adapter.validate_python(document)


class PostgresTicketRepository:
    """Stores each ticket as a JSONB document keyed by id."""

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        document JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """

    _UPSERT_TICKET_SQL = """
    INSERT INTO tickets (id, status, document, created_at, updated_at)
    VALUES ($1, $2, $3::jsonb, $4, $5)
    ON CONFLICT (id) DO UPDATE
    SET status = EXCLUDED.status,
        document = EXCLUDED.document,
        updated_at = EXCLUDED.updated_at
    """

    _SELECT_TICKET_SQL = """
    SELECT document FROM tickets WHERE id = $1
    """

    _LIST_TICKETS_SQL = """
    SELECT document FROM tickets ORDER BY created_at DESC
    """

    _LIST_TICKETS_BY_STATUS_SQL = """
    SELECT document FROM tickets WHERE status = $1 ORDER BY created_at DESC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)

    async def get(self, ticket_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def save(self, ticket: Ticket) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(
                self._UPSERT_TICKET_SQL,
                ticket.id,
                ticket.status.value,
                _TICKET_ADAPTER.dump_json(ticket).decode(),
                ticket.created_at,
                ticket.updated_at,
            )

    async def list(self, *, status: TicketStatus | None = None) -> list[Ticket]:
        async with self._pool.acquire() as connection:
            if status is None:
                rows = await connection.fetch(self._LIST_TICKETS_SQL)
            else:
                rows = await connection.fetch(self._LIST_TICKETS_BY_STATUS_SQL, status.value)
        return [self._row_to_ticket(row) for row in rows]

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        return _load(_TICKET_ADAPTER, row["document"])


class PostgresBillingQueueRepository:
    """Billing queue table; items are inserted once and never updated."""

    _CREATE_QUEUE_SQL = """
    CREATE TABLE IF NOT EXISTS billing_queue (
        queue_item_id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL,
        added_to_queue_at TIMESTAMPTZ NOT NULL,
        document JSONB NOT NULL
    )
    """

    _INSERT_ITEM_SQL = """
    INSERT INTO billing_queue (queue_item_id, ticket_id, added_to_queue_at, document)
    VALUES ($1, $2, $3, $4::jsonb)
    ON CONFLICT (queue_item_id) DO NOTHING
    """

    _LIST_ITEMS_SQL = """
    SELECT document FROM billing_queue ORDER BY added_to_queue_at ASC
    """

    _DELETE_ITEM_SQL = """
    DELETE FROM billing_queue WHERE queue_item_id = $1 RETURNING queue_item_id
    """

    _ANNOTATE_ITEM_SQL = """
    UPDATE billing_queue
    SET document = jsonb_set(document, '{processing_notes}', COALESCE(to_jsonb($2::text), 'null'::jsonb))
    WHERE queue_item_id = $1
    RETURNING document
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_QUEUE_SQL)

    async def append(self, item: BillingQueueItem) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(
                self._INSERT_ITEM_SQL,
                item.queue_item_id,
                item.ticket_id,
                item.added_to_queue_at,
                _BILLING_ADAPTER.dump_json(item).decode(),
            )

    async def list(self) -> list[BillingQueueItem]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._LIST_ITEMS_SQL)
        return [_load(_BILLING_ADAPTER, row["document"]) for row in rows]

    async def remove(self, queue_item_id: str) -> bool:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._DELETE_ITEM_SQL, queue_item_id)
        return row is not None

    async def annotate(self, queue_item_id: str, notes: str | None) -> BillingQueueItem | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._ANNOTATE_ITEM_SQL, queue_item_id, notes)
        if row is None:
            return None
        return _load(_BILLING_ADAPTER, row["document"])
