"""Pure command handlers for the ticket lifecycle.

Every handler takes the current ticket (and a snapshot of the user directory)
and returns a :class:`CommandResult` holding the new ticket value, the
notification events the change calls for and, on completion, the billing
queue item. Nothing here performs I/O; persistence and delivery belong to
:class:`~worktrackr.tickets.service.TicketService`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Mapping

from .billing import BillingQueueDeriver
from .errors import InvalidTransition, ReferenceNotFound, ValidationError
from .models import (
    BillingQueueItem,
    CommandResult,
    CommentType,
    ContactDetails,
    NotificationEvent,
    Ticket,
    TicketComment,
    User,
)
from .sessions import start_work, stop_work
from .state import (
    ApprovalDecision,
    PermissiveTransitionPolicy,
    TicketPriority,
    TicketStatus,
    TransitionPolicy,
    WorkflowStage,
)

UNKNOWN_USER = "Unknown User"
DEFAULT_OPERATIONS_EMAIL = "notifications@worktrackr.cloud"

_APPROVAL_OUTCOMES: Mapping[ApprovalDecision, tuple[TicketStatus, WorkflowStage]] = {
    ApprovalDecision.APPROVED: (TicketStatus.ASSIGNED, WorkflowStage.WORK_IN_PROGRESS),
    ApprovalDecision.DENIED: (TicketStatus.PARKED, WorkflowStage.AWAITING_AUTHORIZATION),
}


@dataclass(slots=True, frozen=True)
class TicketDraft:
    """Fields accepted when creating a ticket."""

    title: str
    description: str = ""
    status: TicketStatus | None = None
    priority: TicketPriority = TicketPriority.MEDIUM
    assigned_to: str | None = None
    contact_details: ContactDetails | None = None
    category: str | None = None
    sector: str | None = None
    location: str | None = None
    scheduled_date: str | None = None
    scheduled_duration_mins: int | None = None
    project_reference: str | None = None
    purchase_order_number: str | None = None


@dataclass(slots=True, frozen=True)
class TicketPatch:
    """Partial update; ``None`` leaves the current value in place."""

    title: str | None = None
    description: str | None = None
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    workflow_stage: WorkflowStage | None = None
    assigned_to: str | None = None
    contact_details: ContactDetails | None = None
    category: str | None = None
    sector: str | None = None
    location: str | None = None
    scheduled_date: str | None = None
    scheduled_duration_mins: int | None = None
    project_reference: str | None = None
    purchase_order_number: str | None = None
    work_started: bool = False
    work_started_by: str | None = None
    work_stopped: bool = False


_MERGED_FIELDS = (
    "title",
    "description",
    "priority",
    "workflow_stage",
    "assigned_to",
    "contact_details",
    "category",
    "sector",
    "location",
    "scheduled_date",
    "scheduled_duration_mins",
    "project_reference",
    "purchase_order_number",
)


def _require_title(title: str | None) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("title", "must not be empty")
    return cleaned


def _approvers(users: Mapping[str, User]) -> list[User]:
    return [user for user in users.values() if user.can_approve]


def _with_reason(message: str, reason: str | None) -> str:
    return f"{message}: {reason}" if reason else message


class TicketEngine:
    """Status state machine, work-session tracker and billing trigger."""

    def __init__(
        self,
        *,
        policy: TransitionPolicy | None = None,
        deriver: BillingQueueDeriver | None = None,
        operations_email: str = DEFAULT_OPERATIONS_EMAIL,
    ) -> None:
        self._policy = policy or PermissiveTransitionPolicy()
        self._deriver = deriver or BillingQueueDeriver()
        self._operations_email = operations_email

    @property
    def policy(self) -> TransitionPolicy:
        return self._policy

    @property
    def deriver(self) -> BillingQueueDeriver:
        return self._deriver

    def create_ticket(self, draft: TicketDraft, *, actor: str, now: datetime) -> CommandResult:
        title = _require_title(draft.title)
        ticket = Ticket(
            id=f"TCK-{uuid.uuid4().hex[:12]}",
            title=title,
            description=draft.description,
            status=draft.status or TicketStatus.NEW,
            priority=draft.priority,
            workflow_stage=WorkflowStage.AWAITING_ASSIGNMENT,
            created_by=actor,
            created_at=now,
            updated_at=now,
            assigned_to=draft.assigned_to,
            contact_details=draft.contact_details,
            category=draft.category,
            sector=draft.sector,
            location=draft.location,
            scheduled_date=draft.scheduled_date,
            scheduled_duration_mins=draft.scheduled_duration_mins,
            project_reference=draft.project_reference,
            purchase_order_number=draft.purchase_order_number,
        )
        event = NotificationEvent(
            recipient_email=self._operations_email,
            subject=f"New Ticket Created: {ticket.title}",
            template="ticket_created",
            ticket_id=ticket.id,
        )
        return CommandResult(ticket=ticket, events=(event,))

    def update_ticket(
        self,
        ticket: Ticket,
        patch: TicketPatch,
        *,
        users: Mapping[str, User],
        now: datetime,
    ) -> CommandResult:
        if patch.title is not None:
            _require_title(patch.title)

        updated, billing_item = self._apply(ticket, patch, now=now)

        events: list[NotificationEvent] = []
        if updated.assigned_to != ticket.assigned_to and updated.assigned_to:
            assignee = users.get(updated.assigned_to)
            if assignee is not None:
                events.append(
                    NotificationEvent(
                        recipient_email=assignee.email,
                        subject=f"Ticket Assigned: {updated.title}",
                        template="ticket_assigned",
                        ticket_id=updated.id,
                    )
                )
        if updated.status != ticket.status and updated.assigned_to:
            assignee = users.get(updated.assigned_to)
            if assignee is not None:
                events.append(
                    NotificationEvent(
                        recipient_email=assignee.email,
                        subject=f"Ticket Status Changed: {updated.title} is now {updated.status.value}",
                        template="status_changed",
                        ticket_id=updated.id,
                    )
                )

        return CommandResult(ticket=updated, events=tuple(events), billing_item=billing_item)

    def add_comment(
        self,
        ticket: Ticket,
        *,
        author_id: str,
        content: str,
        users: Mapping[str, User],
        now: datetime,
        comment_type: CommentType = CommentType.USER,
    ) -> CommandResult:
        if not content.strip():
            raise ValidationError("content", "must not be empty")
        return CommandResult(ticket=self._comment(ticket, author_id, content, users, now, comment_type))

    def pass_ticket(
        self,
        ticket: Ticket,
        *,
        from_user_id: str,
        to_user_id: str,
        users: Mapping[str, User],
        now: datetime,
        reason: str | None = None,
    ) -> CommandResult:
        from_user = users.get(from_user_id)
        if from_user is None:
            raise ReferenceNotFound("user", from_user_id)
        to_user = users.get(to_user_id)
        if to_user is None:
            raise ReferenceNotFound("user", to_user_id)

        passed, _ = self._apply(
            ticket,
            TicketPatch(status=TicketStatus.ASSIGNED, assigned_to=to_user.id),
            now=now,
            enforce_policy=False,
        )
        note = _with_reason(f"Ticket passed from {from_user.name} to {to_user.name}", reason)
        events = (
            NotificationEvent(
                recipient_email=to_user.email,
                subject=f"Ticket Passed to You: {ticket.title}",
                template="ticket_passed",
                ticket_id=ticket.id,
            ),
        )
        return CommandResult(
            ticket=self._comment(passed, from_user.id, note, users, now, CommentType.SYSTEM),
            events=events,
        )

    def request_approval(
        self,
        ticket: Ticket,
        *,
        requester_id: str,
        users: Mapping[str, User],
        now: datetime,
        reason: str | None = None,
    ) -> CommandResult:
        requester = users.get(requester_id)
        if requester is None:
            raise ReferenceNotFound("user", requester_id)
        approvers = _approvers(users)
        if not approvers:
            return CommandResult(ticket=ticket, applied=False)

        requested, _ = self._apply(
            ticket,
            TicketPatch(
                status=TicketStatus.WAITING_APPROVAL,
                workflow_stage=WorkflowStage.AWAITING_AUTHORIZATION,
            ),
            now=now,
            enforce_policy=False,
        )
        note = _with_reason("Approval requested", reason)
        events = tuple(
            NotificationEvent(
                recipient_email=approver.email,
                subject=f"Approval Request: {ticket.title}",
                template="approval_request",
                ticket_id=ticket.id,
            )
            for approver in approvers
        )
        return CommandResult(
            ticket=self._comment(requested, requester.id, note, users, now, CommentType.SYSTEM),
            events=events,
        )

    def process_approval(
        self,
        ticket: Ticket,
        *,
        approver_id: str,
        decision: ApprovalDecision,
        users: Mapping[str, User],
        now: datetime,
        reason: str | None = None,
    ) -> CommandResult:
        approver = users.get(approver_id)
        if approver is None or not approver.can_approve:
            raise ReferenceNotFound("approver", approver_id)

        status, stage = _APPROVAL_OUTCOMES[decision]
        if self._policy.strict and ticket.status != TicketStatus.WAITING_APPROVAL:
            raise InvalidTransition(ticket.status, status)
        note = _with_reason(f"Ticket {decision.value}", reason)
        commented = self._comment(ticket, approver.id, note, users, now, CommentType.SYSTEM)
        decided, _ = self._apply(
            commented,
            TicketPatch(status=status, workflow_stage=stage),
            now=now,
            enforce_policy=False,
        )
        decided = replace(
            decided,
            approver_id=approver.id,
            approval_decision=decision,
            approval_reason=reason,
        )

        events: list[NotificationEvent] = []
        assignee = users.get(ticket.assigned_to) if ticket.assigned_to else None
        if assignee is not None:
            events.append(
                NotificationEvent(
                    recipient_email=assignee.email,
                    subject=f"Ticket {decision.value.upper()}: {ticket.title}",
                    template="approval_decision",
                    ticket_id=ticket.id,
                )
            )
        return CommandResult(ticket=decided, events=tuple(events))

    def _apply(
        self,
        ticket: Ticket,
        patch: TicketPatch,
        *,
        now: datetime,
        enforce_policy: bool = True,
    ) -> tuple[Ticket, BillingQueueItem | None]:
        """Merge ``patch`` into ``ticket`` and run the status and timing triggers.

        ``enforce_policy`` is off for workflow commands, whose target status is
        reachable from any status.
        """

        changes = {name: getattr(patch, name) for name in _MERGED_FIELDS if getattr(patch, name) is not None}
        if "title" in changes:
            changes["title"] = changes["title"].strip()

        if patch.status is not None and patch.status != ticket.status:
            if enforce_policy:
                self._policy.assert_transition(ticket.status, patch.status)
            changes["status"] = patch.status

        updated = replace(ticket, **changes, updated_at=now)

        was_open = ticket.current_work_session is not None
        if patch.work_stopped and was_open:
            updated = stop_work(updated, now)
        if patch.work_started and not was_open:
            updated = start_work(updated, patch.work_started_by, now)

        billing_item = None
        if updated.status == TicketStatus.COMPLETED and ticket.status != TicketStatus.COMPLETED:
            billing_item = self._deriver.derive(updated, now)

        return updated, billing_item

    @staticmethod
    def _comment(
        ticket: Ticket,
        author_id: str,
        content: str,
        users: Mapping[str, User],
        now: datetime,
        comment_type: CommentType,
    ) -> Ticket:
        author = users.get(author_id)
        comment = TicketComment(
            id=f"CMT-{uuid.uuid4().hex[:12]}",
            author=author_id,
            author_name=author.name if author is not None else UNKNOWN_USER,
            content=content,
            created_at=now,
            type=comment_type,
        )
        return replace(ticket, comments=(*ticket.comments, comment), updated_at=now)
