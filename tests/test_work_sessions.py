from datetime import datetime, timedelta, timezone

import pytest

from worktrackr.tickets.models import Ticket
from worktrackr.tickets.sessions import format_time_spent, session_minutes, start_work, stop_work
from worktrackr.tickets.state import TicketPriority, TicketStatus, WorkflowStage

T0 = datetime(2025, 9, 1, 9, 0, tzinfo=timezone.utc)


def _make_ticket(**overrides) -> Ticket:
    values = dict(
        id="TCK-1",
        title="Boiler service",
        description="Annual check",
        status=TicketStatus.ASSIGNED,
        priority=TicketPriority.MEDIUM,
        workflow_stage=WorkflowStage.AWAITING_ASSIGNMENT,
        created_by="u-tech",
        created_at=T0,
        updated_at=T0,
    )
    values.update(overrides)
    return Ticket(**values)


@pytest.mark.parametrize(
    ("elapsed", "expected"),
    [
        (timedelta(seconds=0), 0),
        (timedelta(seconds=29), 0),
        (timedelta(seconds=30), 1),
        (timedelta(minutes=90), 90),
        (timedelta(minutes=44, seconds=31), 45),
    ],
)
def test_session_minutes_rounds_half_up(elapsed, expected):
    assert session_minutes(T0, T0 + elapsed) == expected


def test_session_minutes_never_negative():
    assert session_minutes(T0, T0 - timedelta(minutes=5)) == 0


def test_start_work_opens_single_session():
    ticket = start_work(_make_ticket(), "u-tech", T0)

    assert ticket.current_work_session is not None
    assert ticket.current_work_session.user_id == "u-tech"
    again = start_work(ticket, "u-other", T0 + timedelta(minutes=5))
    assert again is ticket


def test_stop_work_closes_session_and_accumulates():
    ticket = _make_ticket(total_work_time=30)
    ticket = start_work(ticket, "u-tech", T0)
    stopped = stop_work(ticket, T0 + timedelta(minutes=45))

    assert stopped.current_work_session is None
    assert stopped.total_work_time == 75
    assert len(stopped.work_sessions) == 1
    session = stopped.work_sessions[0]
    assert session.start_time == T0
    assert session.end_time == T0 + timedelta(minutes=45)
    assert session.duration_minutes == 45
    assert session.user_id == "u-tech"


def test_stop_work_without_open_session_is_ignored():
    ticket = _make_ticket(total_work_time=10)
    assert stop_work(ticket, T0) is ticket


def test_format_time_spent():
    assert format_time_spent(90) == "1h 30m"
    assert format_time_spent(0) == "0h 0m"
    assert format_time_spent(125) == "2h 5m"
