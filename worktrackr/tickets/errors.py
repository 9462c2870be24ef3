from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .state import TicketStatus


class TicketEngineError(RuntimeError):
    """Base error for ticket engine issues."""


class ValidationError(TicketEngineError):
    """Raised when a command payload is missing or carries invalid fields."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class InvalidTransition(TicketEngineError):
    """Raised when the active transition policy rejects a status change."""

    def __init__(self, current: TicketStatus, target: TicketStatus) -> None:
        super().__init__(f"Invalid ticket status transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target


class ReferenceNotFound(TicketEngineError):
    """Raised when a command names a ticket or user that cannot be resolved."""

    def __init__(self, kind: str, reference: Any) -> None:
        super().__init__(f"{kind.capitalize()} {reference} not found")
        self.kind = kind
        self.reference = reference


class TicketNotFoundError(ReferenceNotFound):
    """Raised when an operation targets a non-existent ticket."""

    def __init__(self, ticket_id: str) -> None:
        super().__init__("ticket", ticket_id)


class NotificationDeliveryFailed(TicketEngineError):
    """Non-fatal warning describing a notification the dispatcher could not deliver."""

    def __init__(self, recipient: str, template: str, reason: str) -> None:
        super().__init__(f"Delivery of {template!r} to {recipient} failed: {reason}")
        self.recipient = recipient
        self.template = template
        self.reason = reason
