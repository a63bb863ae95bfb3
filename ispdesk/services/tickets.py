"""Ticket intake, public tracking and staff-side ticket handling.

Customers open contract requests and fault reports without an account and
follow them with their folio plus the last four digits of their phone. Staff
move tickets through their progression, leave notes and assign technicians.
Every status change is checked by :mod:`ispdesk.domain.lifecycle` first.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
import logging
import re
from typing import Any, Iterable, Protocol

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.core.errors import DatabaseError
from ispdesk.domain.lifecycle import (
    ContractTicketStatus,
    FaultTicketStatus,
    TicketType,
    ticket_progression,
    ticket_snapshot,
    validate_ticket_transition,
)
from ispdesk.domain.models import Ticket
from ispdesk.persistence.repos import staff as staff_repo
from ispdesk.persistence.repos import tickets as tickets_repo
from ispdesk.services.folios import FOLIO_PREFIXES, generate_unique_code, is_valid_folio
from ispdesk.services.lifecycle import commit_or_conflict, ensure_allowed


logger = logging.getLogger(__name__)

TYPE_LABELS: dict[str, str] = {
    TicketType.CONTRACT.value: "Contratación",
    TicketType.FAULT.value: "Reporte de Falla",
}

CONTRACT_STATUS_LABELS: dict[str, str] = {
    ContractTicketStatus.NEW.value: "Recibida",
    ContractTicketStatus.VALIDATION.value: "En validación",
    ContractTicketStatus.CONTACTED.value: "Contactado",
    ContractTicketStatus.SCHEDULED.value: "Cita agendada",
    ContractTicketStatus.INSTALLED.value: "Instalado ✓",
    ContractTicketStatus.CANCELLED.value: "Cancelado",
}

FAULT_STATUS_LABELS: dict[str, str] = {
    FaultTicketStatus.NEW.value: "Reportado",
    FaultTicketStatus.DIAGNOSIS.value: "En diagnóstico",
    FaultTicketStatus.SCHEDULED.value: "Visita agendada",
    FaultTicketStatus.IN_PROGRESS.value: "En reparación",
    FaultTicketStatus.RESOLVED.value: "Resuelto ✓",
    FaultTicketStatus.CANCELLED.value: "Cancelado",
}

TRACK_INVALID_MESSAGE = "Datos inválidos. Verifica el folio y los dígitos de tu teléfono."
TRACK_NOT_FOUND_MESSAGE = (
    "No se encontró la solicitud. Verifica que el folio y los dígitos sean correctos."
)

EVENT_STATUS_CHANGE = "status_change"
EVENT_NOTE_PUBLIC = "note_public"
EVENT_NOTE_INTERNAL = "note_internal"
EVENT_ASSIGNED = "assigned"

_PHONE_LAST4 = re.compile(r"^\d{4}$")


class _HistoryLike(Protocol):
    new_status: str
    created_at: datetime


class _EventLike(Protocol):
    event_type: str
    content: str | None
    created_at: datetime


@dataclass(frozen=True)
class TimelineStep:
    status: str
    label: str
    completed: bool
    current: bool
    date: datetime | None = None
    note: str | None = None


def status_label(ticket_type: str, status: str) -> str:
    labels = CONTRACT_STATUS_LABELS if ticket_type == TicketType.CONTRACT.value else FAULT_STATUS_LABELS
    return labels.get(status, status)


def build_timeline(
    ticket_type: str,
    current_status: str,
    history: Iterable[_HistoryLike],
    public_events: Iterable[_EventLike],
) -> list[TimelineStep]:
    """Lay the ticket's progression out as customer-facing steps.

    Each step carries the date it was last entered and the newest public note
    written while it was the current step. A cancelled ticket shows the steps
    it actually went through as completed.
    """
    steps = [status.value for status in ticket_progression(TicketType(ticket_type))]
    reached: dict[str, datetime] = {}
    for entry in history:
        reached[entry.new_status] = entry.created_at
    notes = [event for event in public_events if event.event_type == EVENT_NOTE_PUBLIC]

    current_index = steps.index(current_status) if current_status in steps else None
    entered_at = sorted(reached.values())

    timeline: list[TimelineStep] = []
    for index, status in enumerate(steps):
        if current_index is None:
            completed = status in reached
        else:
            completed = index < current_index or (index == current_index == len(steps) - 1)

        step_date = reached.get(status)
        note = None
        if step_date is not None:
            later = [moment for moment in entered_at if moment > step_date]
            until = later[0] if later else None
            for event in notes:
                if event.created_at >= step_date and (until is None or event.created_at < until):
                    note = event.content
        timeline.append(
            TimelineStep(
                status=status,
                label=status_label(ticket_type, status),
                completed=completed,
                current=status == current_status,
                date=step_date,
                note=note,
            )
        )
    return timeline


async def create_ticket(
    session: AsyncSession,
    *,
    ticket_type: str,
    data: dict[str, Any],
    today: date | None = None,
) -> Ticket:
    parsed_type = TicketType(ticket_type)
    folio = await generate_unique_code(
        FOLIO_PREFIXES[parsed_type],
        lambda candidate: tickets_repo.folio_exists(session, candidate),
        today=today,
    )
    phone = data["phone"]
    ticket = Ticket(
        folio=folio,
        type=parsed_type.value,
        full_name=data["full_name"].strip(),
        phone=phone,
        phone_last4=phone[-4:],
        email=data.get("email") or None,
        address=data["address"].strip(),
        postal_code=data.get("postal_code"),
        community=data.get("community"),
        municipality=data.get("municipality"),
        references_text=data.get("references_text"),
        package_id=data.get("package_id"),
        preferred_schedule=data.get("preferred_schedule"),
        service_number=data.get("service_number"),
        fault_description=data.get("fault_description"),
        contract_status=ContractTicketStatus.NEW.value if parsed_type is TicketType.CONTRACT else None,
        fault_status=FaultTicketStatus.NEW.value if parsed_type is TicketType.FAULT else None,
    )
    session.add(ticket)
    await session.flush()
    tickets_repo.add_status_history(
        session,
        ticket_id=ticket.id,
        previous_status=None,
        new_status=ticket.current_status,
        changed_by=None,
        change_reason="Solicitud recibida",
    )
    await session.commit()
    logger.info("ticket_created folio=%s type=%s", ticket.folio, ticket.type)
    return ticket


async def track_ticket(session: AsyncSession, *, folio: str, phone_last4: str) -> dict[str, Any]:
    # Same generic messages whether the folio is malformed, unknown or paired with the wrong phone.
    folio = (folio or "").strip().upper()
    phone_last4 = (phone_last4 or "").strip()
    if not is_valid_folio(folio) or not _PHONE_LAST4.match(phone_last4):
        raise HTTPException(
            status_code=400,
            detail={"code": "TRACK_INVALID", "message": TRACK_INVALID_MESSAGE},
        )
    ticket = await tickets_repo.get_for_tracking(session, folio, phone_last4)
    if ticket is None:
        logger.info("ticket_track_miss folio=%s", folio)
        raise HTTPException(
            status_code=404,
            detail={"code": "TICKET_NOT_FOUND", "message": TRACK_NOT_FOUND_MESSAGE, "found": False},
        )

    history = await tickets_repo.list_status_history(session, ticket.id)
    public_events = await tickets_repo.list_events(session, ticket.id, public_only=True)
    current_status = ticket.current_status
    scheduled_time = None
    if ticket.scheduled_time_start:
        scheduled_time = f"{ticket.scheduled_time_start} - {ticket.scheduled_time_end or ''}".strip(" -")
    return {
        "found": True,
        "folio": ticket.folio,
        "type": ticket.type,
        "type_label": TYPE_LABELS[ticket.type],
        "current_status": current_status,
        "status_label": status_label(ticket.type, current_status),
        "scheduled_date": ticket.scheduled_date,
        "scheduled_time": scheduled_time,
        "public_note": ticket.public_note,
        "created_at": ticket.created_at,
        "timeline": build_timeline(ticket.type, current_status, history, public_events),
    }


async def get_ticket_or_404(
    session: AsyncSession, ticket_id: str, *, for_update: bool = False
) -> Ticket:
    ticket = await tickets_repo.get_ticket(session, ticket_id, for_update=for_update)
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


async def change_ticket_status(
    session: AsyncSession,
    ticket: Ticket,
    *,
    new_status: str,
    actor_id: str | None,
    reason: str | None = None,
    scheduled_date: date | None = None,
    scheduled_time_start: str | None = None,
    scheduled_time_end: str | None = None,
) -> Ticket:
    try:
        snapshot = ticket_snapshot(
            folio=ticket.folio,
            ticket_type=ticket.type,
            contract_status=ticket.contract_status,
            fault_status=ticket.fault_status,
        )
    except ValueError as exc:
        logger.error("ticket_row_inconsistent folio=%s", ticket.folio)
        raise DatabaseError(str(exc)) from exc
    ensure_allowed(validate_ticket_transition(snapshot, new_status))

    previous_status = snapshot.status.value
    setattr(ticket, snapshot.status_field, new_status)
    if new_status == ContractTicketStatus.SCHEDULED.value:
        if scheduled_date is not None:
            ticket.scheduled_date = scheduled_date
        if scheduled_time_start is not None:
            ticket.scheduled_time_start = scheduled_time_start
        if scheduled_time_end is not None:
            ticket.scheduled_time_end = scheduled_time_end

    tickets_repo.add_status_history(
        session,
        ticket_id=ticket.id,
        previous_status=previous_status,
        new_status=new_status,
        changed_by=actor_id,
        change_reason=reason,
    )
    tickets_repo.add_event(
        session,
        ticket_id=ticket.id,
        event_type=EVENT_STATUS_CHANGE,
        title=f"{status_label(ticket.type, previous_status)} → {status_label(ticket.type, new_status)}",
        content=reason,
        created_by=actor_id,
    )
    await commit_or_conflict(session, entity="ticket")
    logger.info(
        "ticket_status_changed folio=%s from=%s to=%s actor=%s",
        ticket.folio,
        previous_status,
        new_status,
        actor_id,
    )
    return ticket


async def add_ticket_note(
    session: AsyncSession,
    ticket: Ticket,
    *,
    content: str,
    is_public: bool,
    actor_id: str | None,
):
    event = tickets_repo.add_event(
        session,
        ticket_id=ticket.id,
        event_type=EVENT_NOTE_PUBLIC if is_public else EVENT_NOTE_INTERNAL,
        content=content,
        is_visible_to_customer=is_public,
        created_by=actor_id,
    )
    if is_public:
        ticket.public_note = content
    await commit_or_conflict(session, entity="ticket")
    return event


async def assign_ticket(
    session: AsyncSession,
    ticket: Ticket,
    *,
    staff_id: str,
    actor_id: str | None,
) -> Ticket:
    assignee = await staff_repo.get_staff_user(session, staff_id)
    if assignee is None or not assignee.is_active:
        raise HTTPException(
            status_code=422,
            detail={"code": "ASSIGNEE_INVALID", "message": "Assignee must be an active staff user"},
        )
    ticket.assigned_to = assignee.id
    tickets_repo.add_event(
        session,
        ticket_id=ticket.id,
        event_type=EVENT_ASSIGNED,
        title=f"Asignado a {assignee.full_name}",
        created_by=actor_id,
    )
    await commit_or_conflict(session, entity="ticket")
    logger.info("ticket_assigned folio=%s assignee=%s actor=%s", ticket.folio, assignee.id, actor_id)
    return ticket
