from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from worktrackr.dependencies.tickets import AdminUser, ViewerUser, get_ticket_service
from worktrackr.tickets.errors import ReferenceNotFound
from worktrackr.tickets.models import BillingQueueItem, BillingSnapshot
from worktrackr.tickets.service import TicketService

router = APIRouter(prefix="/billing-queue", tags=["billing"])


class BillingQueueItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    queue_item_id: str
    ticket_id: str
    added_to_queue_at: datetime
    ticket_data: BillingSnapshot
    processing_notes: str | None


class ProcessingNotesRequest(BaseModel):
    processing_notes: str | None = Field(default=None, max_length=2000)


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


def _to_response(item: BillingQueueItem) -> BillingQueueItemResponse:
    return BillingQueueItemResponse.model_validate(item)


@router.get("", response_model=list[BillingQueueItemResponse])
async def list_billing_queue(service: TicketServiceDep, _: ViewerUser) -> list[BillingQueueItemResponse]:
    items = await service.billing_queue()
    return [_to_response(item) for item in items]


@router.post("/{queue_item_id}/billed", status_code=status.HTTP_204_NO_CONTENT)
async def mark_billed(queue_item_id: str, service: TicketServiceDep, _: AdminUser) -> None:
    try:
        await service.mark_billed(queue_item_id)
    except ReferenceNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.put("/{queue_item_id}/notes", response_model=BillingQueueItemResponse)
async def set_processing_notes(
    queue_item_id: str,
    payload: ProcessingNotesRequest,
    service: TicketServiceDep,
    _: AdminUser,
) -> BillingQueueItemResponse:
    try:
        item = await service.annotate_billing_item(queue_item_id, payload.processing_notes)
    except ReferenceNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _to_response(item)
