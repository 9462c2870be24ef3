from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .errors import NotificationDeliveryFailed
from .state import ApprovalDecision, TicketPriority, TicketStatus, WorkflowStage


class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"


class CommentType(str, Enum):
    USER = "user"
    SYSTEM = "system"


@dataclass(slots=True, frozen=True)
class User:
    """Directory entry for someone who can own, pass or approve tickets."""

    id: str
    name: str
    email: str
    role: UserRole = UserRole.STAFF

    @property
    def can_approve(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.MANAGER)


@dataclass(slots=True, frozen=True)
class Address:
    line1: str | None = None
    city: str | None = None
    postcode: str | None = None
    country: str | None = None


@dataclass(slots=True, frozen=True)
class ContactDetails:
    """Customer contact captured on the ticket."""

    name: str | None = None
    company_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: Address = field(default_factory=Address)


@dataclass(slots=True, frozen=True)
class TicketComment:
    id: str
    author: str
    author_name: str
    content: str
    created_at: datetime
    type: CommentType = CommentType.USER


@dataclass(slots=True, frozen=True)
class OpenWorkSession:
    start_time: datetime
    user_id: str | None


@dataclass(slots=True, frozen=True)
class WorkSession:
    """A closed, timed interval of work on a ticket."""

    start_time: datetime
    end_time: datetime
    duration_minutes: int
    user_id: str | None


@dataclass(slots=True, frozen=True)
class Ticket:
    """Aggregate representing a field-service ticket."""

    id: str
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    workflow_stage: WorkflowStage
    created_by: str
    created_at: datetime
    updated_at: datetime
    assigned_to: str | None = None
    comments: tuple[TicketComment, ...] = ()
    work_sessions: tuple[WorkSession, ...] = ()
    current_work_session: OpenWorkSession | None = None
    total_work_time: int = 0
    contact_details: ContactDetails | None = None
    category: str | None = None
    sector: str | None = None
    location: str | None = None
    scheduled_date: str | None = None
    scheduled_duration_mins: int | None = None
    project_reference: str | None = None
    purchase_order_number: str | None = None
    approver_id: str | None = None
    approval_decision: ApprovalDecision | None = None
    approval_reason: str | None = None


@dataclass(slots=True, frozen=True)
class CustomerSnapshot:
    name: str
    email: str
    phone: str
    address: Address


@dataclass(slots=True, frozen=True)
class ServiceSnapshot:
    description: str
    category: str
    date_completed: datetime
    time_spent: str
    hourly_rate: float


@dataclass(slots=True, frozen=True)
class MaterialCost:
    item: str
    cost: float


@dataclass(slots=True, frozen=True)
class BillingBreakdown:
    labor_cost: float
    material_costs: tuple[MaterialCost, ...]
    travel_cost: float
    total_before_tax: float
    tax_rate: float
    tax_amount: float
    total_amount: float


@dataclass(slots=True, frozen=True)
class CustomFields:
    project_reference: str
    purchase_order_number: str


@dataclass(slots=True, frozen=True)
class BillingSnapshot:
    """Invoicing data resolved at the moment a ticket completed."""

    customer: CustomerSnapshot
    service: ServiceSnapshot
    billing: BillingBreakdown
    custom_fields: CustomFields


@dataclass(slots=True, frozen=True)
class BillingQueueItem:
    queue_item_id: str
    ticket_id: str
    added_to_queue_at: datetime
    ticket_data: BillingSnapshot
    processing_notes: str | None = None


@dataclass(slots=True, frozen=True)
class NotificationEvent:
    """Decision that a recipient should hear about a ticket."""

    recipient_email: str
    subject: str
    template: str
    ticket_id: str | None


@dataclass(slots=True, frozen=True)
class DeliveryRecord:
    id: str
    ticket_id: str | None
    to: str
    subject: str
    template: str
    status: str
    sent_at: datetime


@dataclass(slots=True)
class CommandResult:
    """Outcome of a ticket command.

    ``applied`` is false when a workflow command degraded to a no-op. Delivery
    problems never fail a command; they are reported through ``warnings``.
    """

    ticket: Ticket | None
    applied: bool = True
    events: tuple[NotificationEvent, ...] = ()
    billing_item: BillingQueueItem | None = None
    deliveries: list[DeliveryRecord] = field(default_factory=list)
    warnings: list[NotificationDeliveryFailed] = field(default_factory=list)
