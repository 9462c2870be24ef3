from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Protocol, Sequence

import httpx

from .errors import NotificationDeliveryFailed
from .models import DeliveryRecord, NotificationEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def send(
        self,
        recipient_email: str,
        subject: str,
        template: str,
        ticket_id: str | None,
    ) -> DeliveryRecord:
        ...


def _record(
    recipient_email: str,
    subject: str,
    template: str,
    ticket_id: str | None,
    *,
    status: str = "sent",
) -> DeliveryRecord:
    return DeliveryRecord(
        id=f"email-{uuid.uuid4().hex[:12]}",
        ticket_id=ticket_id,
        to=recipient_email,
        subject=subject,
        template=template,
        status=status,
        sent_at=datetime.now(timezone.utc),
    )


class LoggingEmailDispatcher:
    """Dispatcher that only records the email it would have sent."""

    async def send(
        self,
        recipient_email: str,
        subject: str,
        template: str,
        ticket_id: str | None,
    ) -> DeliveryRecord:
        logger.info(
            "Email sent to=%s subject=%r template=%s ticket=%s",
            recipient_email,
            subject,
            template,
            ticket_id or "N/A",
        )
        return _record(recipient_email, subject, template, ticket_id)


class WebhookNotificationDispatcher:
    """Hand notifications to an external delivery service over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/notifications"
        self._token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(
        self,
        recipient_email: str,
        subject: str,
        template: str,
        ticket_id: str | None,
    ) -> DeliveryRecord:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        payload = {"to": recipient_email, "subject": subject, "template": template, "ticket_id": ticket_id}

        response = await self._client.post(self._url, json=payload, headers=headers)
        response.raise_for_status()
        return _record(recipient_email, subject, template, ticket_id)

    async def close(self) -> None:
        await self._client.aclose()


class NotificationLog:
    """Append-only delivery log, read newest first."""

    def __init__(self) -> None:
        self._records: list[DeliveryRecord] = []

    def append(self, record: DeliveryRecord) -> None:
        self._records.append(record)

    def entries(self, *, ticket_id: str | None = None) -> list[DeliveryRecord]:
        records = reversed(self._records)
        if ticket_id is None:
            return list(records)
        return [record for record in records if record.ticket_id == ticket_id]

    def __len__(self) -> int:
        return len(self._records)


class NotificationService:
    """Deliver notification events without ever failing the caller."""

    def __init__(self, dispatcher: NotificationDispatcher, log: NotificationLog | None = None) -> None:
        self._dispatcher = dispatcher
        self._log = log if log is not None else NotificationLog()

    @property
    def log(self) -> NotificationLog:
        return self._log

    async def dispatch(
        self, events: Iterable[NotificationEvent]
    ) -> tuple[Sequence[DeliveryRecord], Sequence[NotificationDeliveryFailed]]:
        records: list[DeliveryRecord] = []
        warnings: list[NotificationDeliveryFailed] = []
        for event in events:
            try:
                record = await self._dispatcher.send(
                    event.recipient_email,
                    event.subject,
                    event.template,
                    event.ticket_id,
                )
            except Exception as exc:  # delivery problems are reported, never raised
                logger.warning(
                    "Notification %s to %s failed: %s",
                    event.template,
                    event.recipient_email,
                    exc,
                )
                record = _record(
                    event.recipient_email,
                    event.subject,
                    event.template,
                    event.ticket_id,
                    status="failed",
                )
                warnings.append(NotificationDeliveryFailed(event.recipient_email, event.template, str(exc)))
            self._log.append(record)
            records.append(record)
        return records, warnings
