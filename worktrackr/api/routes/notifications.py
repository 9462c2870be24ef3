from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict

from worktrackr.dependencies.tickets import ViewerUser, get_ticket_service
from worktrackr.tickets.service import TicketService

router = APIRouter(prefix="/notifications", tags=["notifications"])


class DeliveryRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str | None
    to: str
    subject: str
    template: str
    status: str
    sent_at: datetime


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


@router.get("/log", response_model=list[DeliveryRecordResponse])
async def email_log(
    service: TicketServiceDep,
    _: ViewerUser,
    ticket_id: str | None = Query(default=None),
) -> list[DeliveryRecordResponse]:
    records = service.notification_log(ticket_id=ticket_id)
    return [DeliveryRecordResponse.model_validate(record) for record in records]
