from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Mapping

from opentelemetry import trace

from .engine import TicketDraft, TicketEngine, TicketPatch
from .errors import ReferenceNotFound, TicketNotFoundError
from .models import BillingQueueItem, CommandResult, DeliveryRecord, Ticket, User
from .notifications import NotificationService
from .repository import BillingQueueRepository, TicketRepository, UserDirectory
from .scheduling import Scheduler
from .state import ApprovalDecision, TicketStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Clock = Callable[[], datetime]
WorkflowHandler = Callable[[Ticket, Mapping[str, User], datetime], CommandResult]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketService:
    """High level orchestration for ticket commands.

    Each command runs as a read-modify-write under a per-ticket lock, so two
    commands on the same ticket never interleave while different tickets
    proceed independently. The ticket is saved before notifications are
    dispatched; delivery failures come back as warnings on the result.
    """

    def __init__(
        self,
        repository: TicketRepository,
        *,
        users: UserDirectory,
        billing_queue: BillingQueueRepository,
        notifications: NotificationService,
        engine: TicketEngine | None = None,
        scheduler: Scheduler | None = None,
        raise_on_missing_reference: bool = False,
        clock: Clock = _utcnow,
    ) -> None:
        self._repository = repository
        self._users = users
        self._billing_queue = billing_queue
        self._notifications = notifications
        self._engine = engine or TicketEngine()
        self._scheduler = scheduler
        self._raise_on_missing_reference = raise_on_missing_reference
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: Counter[str] = Counter()

    async def create_ticket(self, draft: TicketDraft, *, actor: str) -> CommandResult:
        with tracer.start_as_current_span("tickets.create"):
            result = self._engine.create_ticket(draft, actor=actor, now=self._clock())
            await self._commit(result)
            ticket = result.ticket
            if ticket is not None:
                logger.info("Ticket %s created by %s", ticket.id, actor)
                if ticket.scheduled_date:
                    await self._schedule(ticket, create=True)
            await self._deliver(result)
            return result

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def list_tickets(self, *, status: TicketStatus | None = None) -> list[Ticket]:
        return await self._repository.list(status=status)

    async def update_ticket(self, ticket_id: str, patch: TicketPatch, *, actor: str) -> CommandResult:
        if patch.work_started and patch.work_started_by is None:
            patch = replace(patch, work_started_by=actor)

        with tracer.start_as_current_span("tickets.update") as span:
            span.set_attribute("ticket.id", ticket_id)
            async with self._ticket_lock(ticket_id):
                ticket = await self.get_ticket(ticket_id)
                users = await self._user_map()
                result = self._engine.update_ticket(ticket, patch, users=users, now=self._clock())
                await self._commit(result)

            updated = result.ticket or ticket
            if updated.status != ticket.status:
                logger.info("Ticket %s moved %s -> %s by %s", ticket_id, ticket.status.value, updated.status.value, actor)
            if updated.scheduled_date:
                await self._schedule(updated, create=False)
            await self._deliver(result)
            return result

    async def add_comment(self, ticket_id: str, *, author_id: str, content: str) -> CommandResult:
        async with self._ticket_lock(ticket_id):
            ticket = await self.get_ticket(ticket_id)
            users = await self._user_map()
            result = self._engine.add_comment(
                ticket,
                author_id=author_id,
                content=content,
                users=users,
                now=self._clock(),
            )
            await self._commit(result)
        return result

    async def pass_ticket(
        self,
        ticket_id: str,
        *,
        from_user_id: str,
        to_user_id: str,
        reason: str | None = None,
    ) -> CommandResult:
        def handler(ticket: Ticket, users: Mapping[str, User], now: datetime) -> CommandResult:
            return self._engine.pass_ticket(
                ticket,
                from_user_id=from_user_id,
                to_user_id=to_user_id,
                users=users,
                now=now,
                reason=reason,
            )

        return await self._run_workflow("tickets.pass", ticket_id, handler)

    async def request_approval(
        self,
        ticket_id: str,
        *,
        requester_id: str,
        reason: str | None = None,
    ) -> CommandResult:
        def handler(ticket: Ticket, users: Mapping[str, User], now: datetime) -> CommandResult:
            return self._engine.request_approval(
                ticket,
                requester_id=requester_id,
                users=users,
                now=now,
                reason=reason,
            )

        result = await self._run_workflow("tickets.request_approval", ticket_id, handler)
        if not result.applied and result.ticket is not None:
            logger.info("Approval for ticket %s not requested: no managers or admins available", ticket_id)
        return result

    async def process_approval(
        self,
        ticket_id: str,
        *,
        approver_id: str,
        decision: ApprovalDecision,
        reason: str | None = None,
    ) -> CommandResult:
        def handler(ticket: Ticket, users: Mapping[str, User], now: datetime) -> CommandResult:
            return self._engine.process_approval(
                ticket,
                approver_id=approver_id,
                decision=decision,
                users=users,
                now=now,
                reason=reason,
            )

        return await self._run_workflow("tickets.process_approval", ticket_id, handler)

    async def billing_queue(self) -> list[BillingQueueItem]:
        return await self._billing_queue.list()

    async def mark_billed(self, queue_item_id: str) -> None:
        removed = await self._billing_queue.remove(queue_item_id)
        if not removed:
            raise ReferenceNotFound("billing queue item", queue_item_id)
        logger.info("Billing queue item %s marked as billed", queue_item_id)

    async def annotate_billing_item(self, queue_item_id: str, notes: str | None) -> BillingQueueItem:
        item = await self._billing_queue.annotate(queue_item_id, notes)
        if item is None:
            raise ReferenceNotFound("billing queue item", queue_item_id)
        return item

    def notification_log(self, *, ticket_id: str | None = None) -> list[DeliveryRecord]:
        return self._notifications.log.entries(ticket_id=ticket_id)

    async def _run_workflow(self, span_name: str, ticket_id: str, handler: WorkflowHandler) -> CommandResult:
        with tracer.start_as_current_span(span_name) as span:
            span.set_attribute("ticket.id", ticket_id)
            async with self._ticket_lock(ticket_id):
                ticket = await self._repository.get(ticket_id)
                if ticket is None:
                    return self._unresolved(TicketNotFoundError(ticket_id), None)
                users = await self._user_map()
                try:
                    result = handler(ticket, users, self._clock())
                except ReferenceNotFound as exc:
                    return self._unresolved(exc, ticket)
                await self._commit(result)

            span.set_attribute("ticket.applied", result.applied)
            await self._deliver(result)
            return result

    @asynccontextmanager
    async def _ticket_lock(self, ticket_id: str) -> AsyncIterator[None]:
        """Hold the ticket's lock; the entry is dropped once nobody holds or awaits it."""

        lock = self._locks.setdefault(ticket_id, asyncio.Lock())
        self._lock_holders[ticket_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[ticket_id] -= 1
            if not self._lock_holders[ticket_id]:
                del self._lock_holders[ticket_id]
                del self._locks[ticket_id]

    def _unresolved(self, error: ReferenceNotFound, ticket: Ticket | None) -> CommandResult:
        if self._raise_on_missing_reference:
            raise error
        logger.warning("Ignoring command: %s", error)
        return CommandResult(ticket=ticket, applied=False)

    async def _commit(self, result: CommandResult) -> None:
        if not result.applied or result.ticket is None:
            return
        await self._repository.save(result.ticket)
        if result.billing_item is not None:
            await self._billing_queue.append(result.billing_item)
            logger.info(
                "Ticket %s queued for billing as %s",
                result.billing_item.ticket_id,
                result.billing_item.queue_item_id,
            )

    async def _deliver(self, result: CommandResult) -> None:
        if not result.events:
            return
        records, warnings = await self._notifications.dispatch(result.events)
        result.deliveries.extend(records)
        result.warnings.extend(warnings)

    async def _user_map(self) -> dict[str, User]:
        return {user.id: user for user in await self._users.list()}

    async def _schedule(self, ticket: Ticket, *, create: bool) -> None:
        if self._scheduler is None:
            return
        users = await self._user_map()
        try:
            if create:
                await self._scheduler.create_entry(ticket, users)
            else:
                await self._scheduler.update_entry(ticket, users)
        except Exception:
            logger.exception("Scheduling failed for ticket %s", ticket.id)

