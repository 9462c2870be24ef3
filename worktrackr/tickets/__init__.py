"""Ticket engine domain models and services."""

from .billing import BillingQueueDeriver, BillingRates
from .engine import TicketDraft, TicketEngine, TicketPatch
from .errors import (
    InvalidTransition,
    NotificationDeliveryFailed,
    ReferenceNotFound,
    TicketEngineError,
    TicketNotFoundError,
    ValidationError,
)
from .models import BillingQueueItem, CommandResult, NotificationEvent, Ticket, User, UserRole
from .service import TicketService
from .state import ApprovalDecision, TicketPriority, TicketStateMachine, TicketStatus, WorkflowStage

__all__ = [
    "ApprovalDecision",
    "BillingQueueDeriver",
    "BillingQueueItem",
    "BillingRates",
    "CommandResult",
    "InvalidTransition",
    "NotificationDeliveryFailed",
    "NotificationEvent",
    "ReferenceNotFound",
    "Ticket",
    "TicketDraft",
    "TicketEngine",
    "TicketEngineError",
    "TicketNotFoundError",
    "TicketPatch",
    "TicketPriority",
    "TicketService",
    "TicketStateMachine",
    "TicketStatus",
    "User",
    "UserRole",
    "ValidationError",
    "WorkflowStage",
]
