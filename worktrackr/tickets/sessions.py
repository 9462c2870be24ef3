"""Work-session tracking.

Sessions are plain wall-clock intervals: the caller decides when work starts
and stops. A ticket carries at most one open session, and closing it moves the
rounded duration into ``total_work_time`` in the same step.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime

from .models import OpenWorkSession, Ticket, WorkSession


def session_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, rounding half up."""

    seconds = (end - start).total_seconds()
    return max(0, math.floor(seconds / 60 + 0.5))


def start_work(ticket: Ticket, user_id: str | None, now: datetime) -> Ticket:
    if ticket.current_work_session is not None:
        return ticket
    return replace(
        ticket,
        current_work_session=OpenWorkSession(start_time=now, user_id=user_id),
        updated_at=now,
    )


def stop_work(ticket: Ticket, now: datetime) -> Ticket:
    current = ticket.current_work_session
    if current is None:
        return ticket

    duration = session_minutes(current.start_time, now)
    closed = WorkSession(
        start_time=current.start_time,
        end_time=now,
        duration_minutes=duration,
        user_id=current.user_id,
    )
    return replace(
        ticket,
        work_sessions=(*ticket.work_sessions, closed),
        total_work_time=ticket.total_work_time + duration,
        current_work_session=None,
        updated_at=now,
    )


def format_time_spent(total_minutes: int) -> str:
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"
