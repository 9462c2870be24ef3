from __future__ import annotations

from enum import Enum
from typing import Mapping, Protocol

from .errors import InvalidTransition


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    NEW = "new"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    WAITING_APPROVAL = "waiting_approval"
    PARKED = "parked"
    RESOLVED = "resolved"
    COMPLETED = "completed"
    CLOSED = "closed"


class WorkflowStage(str, Enum):
    """Human readable phase label kept alongside the status."""

    AWAITING_ASSIGNMENT = "awaiting_assignment"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    WORK_IN_PROGRESS = "work_in_progress"


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ApprovalDecision(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"


class TransitionPolicy(Protocol):
    strict: bool

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        ...

    def assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        ...


class PermissiveTransitionPolicy:
    """Allow any status to move to any other status."""

    strict = False

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        return True

    def assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        return None


class TicketStateMachine:
    """Validate ticket lifecycle transitions against a finite automaton."""

    strict = True

    _DEFAULT_TRANSITIONS: Mapping[TicketStatus, frozenset[TicketStatus]] = {
        TicketStatus.NEW: frozenset(
            {
                TicketStatus.ASSIGNED,
                TicketStatus.IN_PROGRESS,
                TicketStatus.WAITING_APPROVAL,
                TicketStatus.CLOSED,
            }
        ),
        TicketStatus.ASSIGNED: frozenset(
            {
                TicketStatus.IN_PROGRESS,
                TicketStatus.WAITING_APPROVAL,
                TicketStatus.PARKED,
                TicketStatus.RESOLVED,
                TicketStatus.CLOSED,
            }
        ),
        TicketStatus.IN_PROGRESS: frozenset(
            {
                TicketStatus.WAITING_APPROVAL,
                TicketStatus.PARKED,
                TicketStatus.RESOLVED,
                TicketStatus.COMPLETED,
                TicketStatus.CLOSED,
            }
        ),
        TicketStatus.WAITING_APPROVAL: frozenset(
            {TicketStatus.ASSIGNED, TicketStatus.PARKED, TicketStatus.CLOSED}
        ),
        TicketStatus.PARKED: frozenset(
            {
                TicketStatus.ASSIGNED,
                TicketStatus.IN_PROGRESS,
                TicketStatus.WAITING_APPROVAL,
                TicketStatus.CLOSED,
            }
        ),
        TicketStatus.RESOLVED: frozenset(
            {TicketStatus.COMPLETED, TicketStatus.IN_PROGRESS, TicketStatus.CLOSED}
        ),
        TicketStatus.COMPLETED: frozenset({TicketStatus.CLOSED}),
        TicketStatus.CLOSED: frozenset(),
    }

    def __init__(self, transitions: Mapping[TicketStatus, frozenset[TicketStatus]] | None = None) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.NEW

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        if current == target:
            return True
        return target in self._transitions.get(current, frozenset())

    def assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransition(current, target)


def policy_for(strict: bool) -> TransitionPolicy:
    """Return the strict automaton or the permissive compatibility policy."""

    return TicketStateMachine() if strict else PermissiveTransitionPolicy()
