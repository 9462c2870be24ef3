from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from worktrackr.dependencies.tickets import AdminUser, EditorUser, ViewerUser, get_ticket_service
from worktrackr.tickets.engine import TicketDraft, TicketPatch
from worktrackr.tickets.errors import InvalidTransition, ReferenceNotFound, ValidationError
from worktrackr.tickets.models import (
    Address,
    CommandResult,
    ContactDetails,
    OpenWorkSession,
    Ticket,
    TicketComment,
    WorkSession,
)
from worktrackr.tickets.service import TicketService
from worktrackr.tickets.state import ApprovalDecision, TicketPriority, TicketStatus, WorkflowStage

router = APIRouter(prefix="/tickets", tags=["tickets"])


class AddressPayload(BaseModel):
    line1: str | None = None
    city: str | None = None
    postcode: str | None = None
    country: str | None = None


class ContactDetailsPayload(BaseModel):
    name: str | None = None
    company_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: AddressPayload = Field(default_factory=AddressPayload)

    def to_domain(self) -> ContactDetails:
        return ContactDetails(
            name=self.name,
            company_name=self.company_name,
            email=self.email,
            phone=self.phone,
            address=Address(**self.address.model_dump()),
        )


class TicketFieldsPayload(BaseModel):
    description: str | None = None
    priority: TicketPriority | None = None
    assigned_to: str | None = None
    contact_details: ContactDetailsPayload | None = None
    category: str | None = None
    sector: str | None = None
    location: str | None = None
    scheduled_date: str | None = None
    scheduled_duration_mins: int | None = Field(default=None, ge=0)
    project_reference: str | None = None
    purchase_order_number: str | None = None

    def common_fields(self) -> dict[str, object]:
        fields = self.model_dump(
            include={
                "assigned_to",
                "category",
                "sector",
                "location",
                "scheduled_date",
                "scheduled_duration_mins",
                "project_reference",
                "purchase_order_number",
            }
        )
        fields["contact_details"] = self.contact_details.to_domain() if self.contact_details else None
        return fields


class TicketCreateRequest(TicketFieldsPayload):
    title: str = Field(..., min_length=1, max_length=255)
    status: TicketStatus | None = None

    def to_draft(self) -> TicketDraft:
        return TicketDraft(
            title=self.title,
            description=self.description or "",
            status=self.status,
            priority=self.priority or TicketPriority.MEDIUM,
            **self.common_fields(),
        )


class TicketUpdateRequest(TicketFieldsPayload):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    status: TicketStatus | None = None
    workflow_stage: WorkflowStage | None = None
    work_started: bool = False
    work_started_by: str | None = None
    work_stopped: bool = False

    def to_patch(self) -> TicketPatch:
        return TicketPatch(
            title=self.title,
            description=self.description,
            status=self.status,
            priority=self.priority,
            workflow_stage=self.workflow_stage,
            work_started=self.work_started,
            work_started_by=self.work_started_by,
            work_stopped=self.work_stopped,
            **self.common_fields(),
        )


class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1)


class PassTicketRequest(BaseModel):
    to_user_id: str
    from_user_id: str | None = None
    reason: str | None = Field(default=None, max_length=500)


class ApprovalRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ApprovalDecisionRequest(BaseModel):
    decision: ApprovalDecision
    reason: str | None = Field(default=None, max_length=500)


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    workflow_stage: WorkflowStage
    assigned_to: str | None
    created_by: str
    comments: list[TicketComment]
    work_sessions: list[WorkSession]
    current_work_session: OpenWorkSession | None
    total_work_time: int
    contact_details: ContactDetails | None
    category: str | None
    sector: str | None
    location: str | None
    scheduled_date: str | None
    scheduled_duration_mins: int | None
    project_reference: str | None
    purchase_order_number: str | None
    approver_id: str | None
    approval_decision: ApprovalDecision | None
    approval_reason: str | None
    created_at: datetime
    updated_at: datetime


class CommandResponse(BaseModel):
    ticket: TicketResponse | None
    applied: bool
    warnings: list[str] = Field(default_factory=list)


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def _to_command_response(result: CommandResult) -> CommandResponse:
    return CommandResponse(
        ticket=_to_response(result.ticket) if result.ticket is not None else None,
        applied=result.applied,
        warnings=[str(warning) for warning in result.warnings],
    )


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, InvalidTransition):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=404, detail=str(exc))


@router.post("", response_model=CommandResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    user: EditorUser,
) -> CommandResponse:
    try:
        result = await service.create_ticket(payload.to_draft(), actor=user.actor)
    except ValidationError as exc:
        raise _http_error(exc) from exc
    return _to_command_response(result)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    service: TicketServiceDep,
    _: ViewerUser,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
) -> list[TicketResponse]:
    tickets = await service.list_tickets(status=status_filter)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, _: ViewerUser) -> TicketResponse:
    try:
        ticket = await service.get_ticket(ticket_id)
    except ReferenceNotFound as exc:
        raise _http_error(exc) from exc
    return _to_response(ticket)


@router.patch("/{ticket_id}", response_model=CommandResponse)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
    user: EditorUser,
) -> CommandResponse:
    try:
        result = await service.update_ticket(ticket_id, payload.to_patch(), actor=user.actor)
    except (ValidationError, ReferenceNotFound, InvalidTransition) as exc:
        raise _http_error(exc) from exc
    return _to_command_response(result)


@router.post("/{ticket_id}/comments", response_model=CommandResponse)
async def add_comment(
    ticket_id: str,
    payload: CommentRequest,
    service: TicketServiceDep,
    user: EditorUser,
) -> CommandResponse:
    try:
        result = await service.add_comment(ticket_id, author_id=user.actor, content=payload.content)
    except (ValidationError, ReferenceNotFound) as exc:
        raise _http_error(exc) from exc
    return _to_command_response(result)


@router.post("/{ticket_id}/pass", response_model=CommandResponse)
async def pass_ticket(
    ticket_id: str,
    payload: PassTicketRequest,
    service: TicketServiceDep,
    user: EditorUser,
) -> CommandResponse:
    try:
        result = await service.pass_ticket(
            ticket_id,
            from_user_id=payload.from_user_id or user.actor,
            to_user_id=payload.to_user_id,
            reason=payload.reason,
        )
    except (ReferenceNotFound, InvalidTransition) as exc:
        raise _http_error(exc) from exc
    return _to_command_response(result)


@router.post("/{ticket_id}/approval-requests", response_model=CommandResponse)
async def request_approval(
    ticket_id: str,
    payload: ApprovalRequest,
    service: TicketServiceDep,
    user: EditorUser,
) -> CommandResponse:
    try:
        result = await service.request_approval(ticket_id, requester_id=user.actor, reason=payload.reason)
    except (ReferenceNotFound, InvalidTransition) as exc:
        raise _http_error(exc) from exc
    return _to_command_response(result)


@router.post("/{ticket_id}/approval-decisions", response_model=CommandResponse)
async def process_approval(
    ticket_id: str,
    payload: ApprovalDecisionRequest,
    service: TicketServiceDep,
    user: AdminUser,
) -> CommandResponse:
    try:
        result = await service.process_approval(
            ticket_id,
            approver_id=user.actor,
            decision=payload.decision,
            reason=payload.reason,
        )
    except (ReferenceNotFound, InvalidTransition) as exc:
        raise _http_error(exc) from exc
    return _to_command_response(result)
