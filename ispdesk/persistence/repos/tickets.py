from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.models import Ticket, TicketEvent, TicketStatusHistory


async def get_ticket(
    session: AsyncSession, ticket_id: str, *, for_update: bool = False
) -> Ticket | None:
    stmt = select(Ticket).where(Ticket.id == ticket_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def folio_exists(session: AsyncSession, folio: str) -> bool:
    result = await session.execute(select(Ticket.id).where(Ticket.folio == folio))
    return result.first() is not None


async def get_for_tracking(session: AsyncSession, folio: str, phone_last4: str) -> Ticket | None:
    # Both values must match; a folio alone never resolves a ticket.
    result = await session.execute(
        select(Ticket).where(Ticket.folio == folio, Ticket.phone_last4 == phone_last4)
    )
    return result.scalar_one_or_none()


async def list_tickets(
    session: AsyncSession,
    *,
    ticket_type: str | None = None,
    status: str | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 15,
) -> tuple[list[Ticket], int]:
    stmt = select(Ticket)
    if ticket_type:
        stmt = stmt.where(Ticket.type == ticket_type)
    if status:
        stmt = stmt.where(or_(Ticket.contract_status == status, Ticket.fault_status == status))
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Ticket.folio.ilike(pattern),
                Ticket.full_name.ilike(pattern),
                Ticket.phone.ilike(pattern),
            )
        )

    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    stmt = stmt.order_by(Ticket.created_at.desc(), Ticket.id.desc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all()), int(total or 0)


async def list_status_history(session: AsyncSession, ticket_id: str) -> list[TicketStatusHistory]:
    result = await session.execute(
        select(TicketStatusHistory)
        .where(TicketStatusHistory.ticket_id == ticket_id)
        .order_by(TicketStatusHistory.created_at, TicketStatusHistory.id)
    )
    return list(result.scalars().all())


async def list_events(
    session: AsyncSession,
    ticket_id: str,
    *,
    public_only: bool = False,
) -> list[TicketEvent]:
    stmt = select(TicketEvent).where(TicketEvent.ticket_id == ticket_id)
    if public_only:
        stmt = stmt.where(TicketEvent.is_visible_to_customer.is_(True))
    stmt = stmt.order_by(TicketEvent.created_at, TicketEvent.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


def add_status_history(
    session: AsyncSession,
    *,
    ticket_id: str,
    previous_status: str | None,
    new_status: str,
    changed_by: str | None,
    change_reason: str | None = None,
) -> TicketStatusHistory:
    row = TicketStatusHistory(
        ticket_id=ticket_id,
        previous_status=previous_status,
        new_status=new_status,
        changed_by=changed_by,
        change_reason=change_reason,
    )
    session.add(row)
    return row


def add_event(
    session: AsyncSession,
    *,
    ticket_id: str,
    event_type: str,
    created_by: str | None,
    title: str | None = None,
    content: str | None = None,
    is_visible_to_customer: bool = False,
) -> TicketEvent:
    row = TicketEvent(
        ticket_id=ticket_id,
        event_type=event_type,
        title=title,
        content=content,
        is_visible_to_customer=is_visible_to_customer,
        created_by=created_by,
    )
    session.add(row)
    return row


async def count_tickets(
    session: AsyncSession,
    *,
    ticket_type: str,
    statuses: list[str] | None = None,
    created_since: datetime | None = None,
    updated_since: datetime | None = None,
) -> int:
    status_column = Ticket.contract_status if ticket_type == "contract" else Ticket.fault_status
    stmt = select(func.count()).select_from(Ticket).where(Ticket.type == ticket_type)
    if statuses:
        stmt = stmt.where(status_column.in_(statuses))
    if created_since is not None:
        stmt = stmt.where(Ticket.created_at >= created_since)
    if updated_since is not None:
        stmt = stmt.where(Ticket.updated_at >= updated_since)
    total = await session.scalar(stmt)
    return int(total or 0)


async def list_recent_tickets(session: AsyncSession, *, limit: int = 5) -> list[Ticket]:
    result = await session.execute(
        select(Ticket).order_by(Ticket.created_at.desc(), Ticket.id.desc()).limit(limit)
    )
    return list(result.scalars().all())
