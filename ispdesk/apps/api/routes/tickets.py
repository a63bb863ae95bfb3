from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Literal, Union

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.apps.api.deps import Principal, get_db, require_role
from ispdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ispdesk.apps.api.rate_limit import (
    LIMIT_CREATE_TICKET,
    LIMIT_DEFAULT,
    LIMIT_TRACK_FOLIO,
    rate_limited,
)
from ispdesk.apps.api.response import SuccessEnvelope, success_response
from ispdesk.core.config import get_settings
from ispdesk.core.errors import DatabaseError, FolioGenerationError
from ispdesk.domain.lifecycle import TicketType
from ispdesk.domain.models import Ticket
from ispdesk.persistence.repos import tickets as tickets_repo
from ispdesk.services import tickets as tickets_service


router = APIRouter(prefix="/tickets", tags=["tickets"], responses=DEFAULT_ERROR_RESPONSES)

_PHONE_PATTERN = r"^\d{10}$"
_POSTAL_CODE_PATTERN = r"^\d{5}$"
_EMAIL_PATTERN = r"^$|^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ContractTicketCreate(BaseModel):
    type: Literal["contract"]
    full_name: str = Field(min_length=3)
    phone: str = Field(pattern=_PHONE_PATTERN)
    email: str | None = Field(default=None, pattern=_EMAIL_PATTERN)
    address: str = Field(min_length=10)
    postal_code: str = Field(pattern=_POSTAL_CODE_PATTERN)
    community: str | None = None
    municipality: str | None = None
    references_text: str | None = None
    package_id: str | None = None
    preferred_schedule: str | None = None

    model_config = {"extra": "forbid"}


class FaultTicketCreate(BaseModel):
    type: Literal["fault"]
    full_name: str = Field(min_length=3)
    phone: str = Field(pattern=_PHONE_PATTERN)
    email: str | None = Field(default=None, pattern=_EMAIL_PATTERN)
    address: str = Field(min_length=10)
    postal_code: str | None = Field(default=None, pattern=_POSTAL_CODE_PATTERN)
    service_number: str | None = None
    fault_description: str = Field(min_length=10)

    model_config = {"extra": "forbid"}


TicketCreateRequest = Annotated[
    Union[ContractTicketCreate, FaultTicketCreate], Body(discriminator="type")
]


class TicketCreatedResponse(BaseModel):
    folio: str
    type: str
    status: str
    status_label: str
    created_at: datetime


class TrackRequest(BaseModel):
    # Left unconstrained so malformed input gets the same generic 400 as a miss.
    folio: str = ""
    phone_last4: str = ""


class TimelineStepResponse(BaseModel):
    status: str
    label: str
    completed: bool
    current: bool
    date: datetime | None = None
    note: str | None = None


class TrackResponse(BaseModel):
    found: bool
    folio: str
    type: str
    type_label: str
    current_status: str
    status_label: str
    scheduled_date: date | None = None
    scheduled_time: str | None = None
    public_note: str | None = None
    created_at: datetime
    timeline: list[TimelineStepResponse]


class TicketResponse(BaseModel):
    id: str
    folio: str
    type: str
    status: str
    status_label: str
    priority: str
    full_name: str
    phone: str
    email: str | None
    address: str
    postal_code: str | None
    community: str | None
    municipality: str | None
    references_text: str | None
    package_id: str | None
    preferred_schedule: str | None
    service_number: str | None
    fault_description: str | None
    assigned_to: str | None
    scheduled_date: date | None
    scheduled_time_start: str | None
    scheduled_time_end: str | None
    public_note: str | None
    created_at: datetime
    updated_at: datetime


class StatusHistoryResponse(BaseModel):
    previous_status: str | None
    new_status: str
    change_reason: str | None
    changed_by: str | None
    created_at: datetime


class TicketEventResponse(BaseModel):
    id: int
    event_type: str
    title: str | None
    content: str | None
    is_visible_to_customer: bool
    created_by: str | None
    created_at: datetime


class TicketDetailResponse(TicketResponse):
    history: list[StatusHistoryResponse]
    events: list[TicketEventResponse]


class TicketListResponse(BaseModel):
    items: list[TicketResponse]
    total: int
    next_offset: int | None


class TicketStatusRequest(BaseModel):
    status: str
    reason: str | None = None
    scheduled_date: date | None = None
    scheduled_time_start: str | None = None
    scheduled_time_end: str | None = None


class TicketNoteRequest(BaseModel):
    content: str = Field(min_length=1)
    is_public: bool = False


class TicketAssignRequest(BaseModel):
    staff_id: str = Field(min_length=1)


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse(
        id=ticket.id,
        folio=ticket.folio,
        type=ticket.type,
        status=ticket.current_status,
        status_label=tickets_service.status_label(ticket.type, ticket.current_status),
        priority=ticket.priority,
        full_name=ticket.full_name,
        phone=ticket.phone,
        email=ticket.email,
        address=ticket.address,
        postal_code=ticket.postal_code,
        community=ticket.community,
        municipality=ticket.municipality,
        references_text=ticket.references_text,
        package_id=ticket.package_id,
        preferred_schedule=ticket.preferred_schedule,
        service_number=ticket.service_number,
        fault_description=ticket.fault_description,
        assigned_to=ticket.assigned_to,
        scheduled_date=ticket.scheduled_date,
        scheduled_time_start=ticket.scheduled_time_start,
        scheduled_time_end=ticket.scheduled_time_end,
        public_note=ticket.public_note,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
    )


def _event_response(event) -> TicketEventResponse:
    return TicketEventResponse(
        id=event.id,
        event_type=event.event_type,
        title=event.title,
        content=event.content,
        is_visible_to_customer=event.is_visible_to_customer,
        created_by=event.created_by,
        created_at=event.created_at,
    )


@router.post(
    "",
    status_code=201,
    response_model=SuccessEnvelope[TicketCreatedResponse],
    dependencies=[Depends(rate_limited(LIMIT_CREATE_TICKET))],
)
async def create_ticket(
    request: Request,
    payload: TicketCreateRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        ticket = await tickets_service.create_ticket(
            db,
            ticket_type=payload.type,
            data=payload.model_dump(exclude={"type"}),
        )
    except FolioGenerationError as exc:
        raise HTTPException(
            status_code=503,
            detail={"code": "FOLIO_UNAVAILABLE", "message": "Could not allocate a folio, retry later"},
        ) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while creating ticket") from exc
    data = TicketCreatedResponse(
        folio=ticket.folio,
        type=ticket.type,
        status=ticket.current_status,
        status_label=tickets_service.status_label(ticket.type, ticket.current_status),
        created_at=ticket.created_at,
    )
    return success_response(request=request, data=data)


@router.post(
    "/track",
    response_model=SuccessEnvelope[TrackResponse],
    dependencies=[Depends(rate_limited(LIMIT_TRACK_FOLIO))],
)
async def track_ticket(
    request: Request,
    payload: TrackRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        result = await tickets_service.track_ticket(
            db, folio=payload.folio, phone_last4=payload.phone_last4
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while tracking ticket") from exc
    return success_response(request=request, data=result)


@router.get(
    "",
    response_model=SuccessEnvelope[TicketListResponse],
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)
async def list_tickets(
    request: Request,
    ticket_type: TicketType | None = Query(default=None, alias="type"),
    status: str | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
    principal: Principal = Depends(require_role("tech")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    settings = get_settings()
    page_size = min(limit or settings.default_page_size, settings.max_page_size)
    try:
        tickets, total = await tickets_repo.list_tickets(
            db,
            ticket_type=ticket_type.value if ticket_type else None,
            status=status,
            search=search,
            offset=offset,
            limit=page_size,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing tickets") from exc
    next_offset = offset + page_size if offset + page_size < total else None
    data = TicketListResponse(
        items=[_to_response(ticket) for ticket in tickets],
        total=total,
        next_offset=next_offset,
    )
    return success_response(request=request, data=data)


@router.get(
    "/{ticket_id}",
    response_model=SuccessEnvelope[TicketDetailResponse],
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)
async def get_ticket(
    ticket_id: str,
    request: Request,
    principal: Principal = Depends(require_role("tech")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        ticket = await tickets_service.get_ticket_or_404(db, ticket_id)
        history = await tickets_repo.list_status_history(db, ticket.id)
        events = await tickets_repo.list_events(db, ticket.id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching ticket") from exc
    data = TicketDetailResponse(
        **_to_response(ticket).model_dump(),
        history=[
            StatusHistoryResponse(
                previous_status=row.previous_status,
                new_status=row.new_status,
                change_reason=row.change_reason,
                changed_by=row.changed_by,
                created_at=row.created_at,
            )
            for row in history
        ],
        events=[_event_response(event) for event in events],
    )
    return success_response(request=request, data=data)


@router.patch(
    "/{ticket_id}/status",
    response_model=SuccessEnvelope[TicketResponse],
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)
async def change_ticket_status(
    ticket_id: str,
    request: Request,
    payload: TicketStatusRequest,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        ticket = await tickets_service.get_ticket_or_404(db, ticket_id, for_update=True)
        ticket = await tickets_service.change_ticket_status(
            db,
            ticket,
            new_status=payload.status,
            actor_id=principal.staff_id,
            reason=payload.reason,
            scheduled_date=payload.scheduled_date,
            scheduled_time_start=payload.scheduled_time_start,
            scheduled_time_end=payload.scheduled_time_end,
        )
    except (DatabaseError, SQLAlchemyError) as exc:
        raise HTTPException(status_code=500, detail="Database error while updating ticket") from exc
    return success_response(request=request, data=_to_response(ticket))


@router.post(
    "/{ticket_id}/notes",
    status_code=201,
    response_model=SuccessEnvelope[TicketEventResponse],
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)
async def add_ticket_note(
    ticket_id: str,
    request: Request,
    payload: TicketNoteRequest,
    principal: Principal = Depends(require_role("tech")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        ticket = await tickets_service.get_ticket_or_404(db, ticket_id, for_update=True)
        event = await tickets_service.add_ticket_note(
            db,
            ticket,
            content=payload.content,
            is_public=payload.is_public,
            actor_id=principal.staff_id,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while adding note") from exc
    return success_response(request=request, data=_event_response(event))


@router.post(
    "/{ticket_id}/assign",
    response_model=SuccessEnvelope[TicketResponse],
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)
async def assign_ticket(
    ticket_id: str,
    request: Request,
    payload: TicketAssignRequest,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        ticket = await tickets_service.get_ticket_or_404(db, ticket_id, for_update=True)
        ticket = await tickets_service.assign_ticket(
            db, ticket, staff_id=payload.staff_id, actor_id=principal.staff_id
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while assigning ticket") from exc
    return success_response(request=request, data=_to_response(ticket))

