from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from worktrackr.tickets.engine import TicketDraft, TicketEngine, TicketPatch
from worktrackr.tickets.errors import (
    InvalidTransition,
    ReferenceNotFound,
    TicketNotFoundError,
    ValidationError,
)
from worktrackr.tickets.models import Address, ContactDetails
from worktrackr.tickets.notifications import NotificationService
from worktrackr.tickets.repository import InMemoryUserDirectory
from worktrackr.tickets.state import ApprovalDecision, TicketStateMachine, TicketStatus, WorkflowStage


@pytest.mark.asyncio
async def test_work_then_complete_queues_one_billing_item(make_service, clock, billing_queue):
    service = make_service()
    created = await service.create_ticket(TicketDraft(title="Service boiler"), actor="u-tech")
    ticket_id = created.ticket.id

    await service.update_ticket(ticket_id, TicketPatch(work_started=True), actor="u-tech")
    clock.advance(minutes=90)
    stopped = await service.update_ticket(ticket_id, TicketPatch(work_stopped=True), actor="u-tech")
    assert stopped.ticket.total_work_time == 90
    assert stopped.ticket.work_sessions[0].user_id == "u-tech"

    await service.update_ticket(ticket_id, TicketPatch(status=TicketStatus.COMPLETED), actor="u-tech")

    items = await service.billing_queue()
    assert len(items) == 1
    assert items[0].ticket_id == ticket_id
    assert items[0].ticket_data.service.time_spent == "1h 30m"

    await service.update_ticket(ticket_id, TicketPatch(status=TicketStatus.COMPLETED), actor="u-tech")
    assert len(await billing_queue.list()) == 1


@pytest.mark.asyncio
async def test_billing_snapshot_ignores_later_edits(make_service, clock):
    service = make_service()
    contact = ContactDetails(name="Jane", email="jane@acme.test", address=Address(city="York"))
    created = await service.create_ticket(
        TicketDraft(title="Survey", contact_details=contact), actor="u-tech"
    )
    ticket_id = created.ticket.id
    await service.update_ticket(ticket_id, TicketPatch(status=TicketStatus.COMPLETED), actor="u-tech")

    await service.update_ticket(
        ticket_id,
        TicketPatch(title="Renamed", contact_details=ContactDetails(name="Someone else")),
        actor="u-tech",
    )

    (item,) = await service.billing_queue()
    assert item.ticket_data.service.description == "Survey"
    assert item.ticket_data.customer.name == "Jane"
    assert item.ticket_data.customer.address.city == "York"


@pytest.mark.asyncio
async def test_create_rejects_empty_title(make_service, ticket_repository):
    service = make_service()
    with pytest.raises(ValidationError):
        await service.create_ticket(TicketDraft(title=""), actor="u-tech")
    assert await ticket_repository.list() == []


@pytest.mark.asyncio
async def test_create_records_notification_and_booking(make_service, scheduler):
    service = make_service()
    result = await service.create_ticket(
        TicketDraft(title="Install heat pump", scheduled_date="2025-09-15", assigned_to="u-tech"),
        actor="u-admin",
    )

    assert result.ticket.workflow_stage == WorkflowStage.AWAITING_ASSIGNMENT
    log = service.notification_log()
    assert [(record.template, record.status) for record in log] == [("ticket_created", "sent")]
    assert result.deliveries == log
    (booking,) = scheduler.bookings()
    assert booking.id == f"BK-{result.ticket.id}"
    assert booking.assigned_to == "Tess Tech"
    assert booking.date.isoformat() == "2025-09-15"


@pytest.mark.asyncio
async def test_update_unknown_ticket_raises(make_service):
    service = make_service()
    with pytest.raises(TicketNotFoundError):
        await service.update_ticket("TCK-missing", TicketPatch(description="x"), actor="u-tech")


@pytest.mark.asyncio
async def test_pass_to_unknown_user_is_noop_in_compatibility_mode(make_service):
    service = make_service()
    created = await service.create_ticket(TicketDraft(title="Leak"), actor="u-tech")

    result = await service.pass_ticket(created.ticket.id, from_user_id="u-tech", to_user_id="ghost")

    assert not result.applied
    stored = await service.get_ticket(created.ticket.id)
    assert stored == created.ticket
    assert stored.comments == ()
    assert stored.status == TicketStatus.NEW


@pytest.mark.asyncio
async def test_pass_to_unknown_user_raises_in_strict_mode(make_service):
    service = make_service(raise_on_missing_reference=True)
    created = await service.create_ticket(TicketDraft(title="Leak"), actor="u-tech")

    with pytest.raises(ReferenceNotFound):
        await service.pass_ticket(created.ticket.id, from_user_id="u-tech", to_user_id="ghost")
    assert (await service.get_ticket(created.ticket.id)) == created.ticket


@pytest.mark.asyncio
async def test_workflow_command_on_unknown_ticket(make_service):
    service = make_service()
    result = await service.request_approval("TCK-missing", requester_id="u-tech")
    assert result.ticket is None
    assert not result.applied

    strict = make_service(raise_on_missing_reference=True)
    with pytest.raises(TicketNotFoundError):
        await strict.request_approval("TCK-missing", requester_id="u-tech")


@pytest.mark.asyncio
async def test_request_approval_without_managers_leaves_status(make_service, users_map):
    staff = InMemoryUserDirectory([users_map["u-tech"], users_map["u-tech-2"]])
    service = make_service(users=staff)
    created = await service.create_ticket(TicketDraft(title="Leak"), actor="u-tech")

    result = await service.request_approval(created.ticket.id, requester_id="u-tech")

    assert not result.applied
    stored = await service.get_ticket(created.ticket.id)
    assert stored.status == TicketStatus.NEW
    assert stored.comments == ()


@pytest.mark.asyncio
async def test_approval_round_trip_notifies_assignee(make_service):
    service = make_service()
    created = await service.create_ticket(TicketDraft(title="Roof repair", assigned_to="u-tech"), actor="u-admin")
    ticket_id = created.ticket.id

    requested = await service.request_approval(ticket_id, requester_id="u-tech", reason="scaffolding")
    assert requested.ticket.status == TicketStatus.WAITING_APPROVAL
    assert len(requested.deliveries) == 2

    decided = await service.process_approval(ticket_id, approver_id="u-admin", decision=ApprovalDecision.APPROVED)
    assert decided.ticket.status == TicketStatus.ASSIGNED
    assert decided.ticket.workflow_stage == WorkflowStage.WORK_IN_PROGRESS
    assert [record.to for record in decided.deliveries] == ["tess@example.com"]

    templates = [record.template for record in service.notification_log(ticket_id=ticket_id)]
    assert templates[0] == "approval_decision"
    assert templates.count("approval_request") == 2


@pytest.mark.asyncio
async def test_notification_failure_is_a_warning_not_an_error(make_service):
    dispatcher = AsyncMock()
    dispatcher.send = AsyncMock(side_effect=RuntimeError("smtp down"))
    service = make_service(notifications=NotificationService(dispatcher))

    result = await service.create_ticket(TicketDraft(title="Leak"), actor="u-tech")

    assert result.applied
    assert await service.get_ticket(result.ticket.id) == result.ticket
    assert len(result.warnings) == 1
    assert "smtp down" in str(result.warnings[0])
    assert [record.status for record in service.notification_log()] == ["failed"]


@pytest.mark.asyncio
async def test_scheduler_failure_does_not_fail_create(make_service):
    scheduler = AsyncMock()
    scheduler.create_entry = AsyncMock(side_effect=RuntimeError("calendar offline"))
    service = make_service(scheduler=scheduler)

    result = await service.create_ticket(TicketDraft(title="Visit", scheduled_date="2025-09-20"), actor="u-tech")

    assert result.applied
    scheduler.create_entry.assert_awaited_once()


@pytest.mark.asyncio
async def test_strict_engine_rejects_direct_completion(make_service):
    service = make_service(engine=TicketEngine(policy=TicketStateMachine()))
    created = await service.create_ticket(TicketDraft(title="Leak"), actor="u-tech")

    with pytest.raises(InvalidTransition):
        await service.update_ticket(created.ticket.id, TicketPatch(status=TicketStatus.COMPLETED), actor="u-tech")
    assert (await service.get_ticket(created.ticket.id)).status == TicketStatus.NEW


@pytest.mark.asyncio
async def test_concurrent_updates_on_one_ticket_are_serialised(make_service, ticket_repository):
    service = make_service()
    created = await service.create_ticket(TicketDraft(title="Leak"), actor="u-tech")
    ticket_id = created.ticket.id

    original_get = ticket_repository.get

    async def slow_get(requested_id):
        ticket = await original_get(requested_id)
        await asyncio.sleep(0)
        return ticket

    ticket_repository.get = slow_get

    await asyncio.gather(
        *(
            service.add_comment(ticket_id, author_id="u-tech", content=f"note {index}")
            for index in range(5)
        )
    )

    stored = await original_get(ticket_id)
    assert sorted(comment.content for comment in stored.comments) == [f"note {index}" for index in range(5)]
    assert service._locks == {}


@pytest.mark.asyncio
async def test_locks_for_unknown_tickets_are_not_retained(make_service):
    service = make_service()

    for index in range(3):
        result = await service.pass_ticket(f"TCK-missing-{index}", from_user_id="u-tech", to_user_id="u-tech-2")
        assert not result.applied

    assert service._locks == {}
    assert not service._lock_holders


@pytest.mark.asyncio
async def test_mark_billed_removes_queue_item(make_service):
    service = make_service()
    created = await service.create_ticket(TicketDraft(title="Leak"), actor="u-tech")
    await service.update_ticket(created.ticket.id, TicketPatch(status=TicketStatus.COMPLETED), actor="u-tech")
    (item,) = await service.billing_queue()

    await service.mark_billed(item.queue_item_id)

    assert await service.billing_queue() == []
    with pytest.raises(ReferenceNotFound):
        await service.mark_billed(item.queue_item_id)


@pytest.mark.asyncio
async def test_processing_notes_leave_snapshot_untouched(make_service):
    service = make_service()
    created = await service.create_ticket(TicketDraft(title="Leak"), actor="u-tech")
    await service.update_ticket(created.ticket.id, TicketPatch(status=TicketStatus.COMPLETED), actor="u-tech")
    (item,) = await service.billing_queue()

    annotated = await service.annotate_billing_item(item.queue_item_id, "Invoice via PO only")

    assert annotated.processing_notes == "Invoice via PO only"
    assert annotated.ticket_data == item.ticket_data
    assert (await service.billing_queue())[0].processing_notes == "Invoice via PO only"
    with pytest.raises(ReferenceNotFound):
        await service.annotate_billing_item("BQ-missing", "nope")
