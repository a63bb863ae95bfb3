"""Back-office dashboard counters.

Day and month boundaries are taken in UTC, the zone timestamps are stored in.
"""

from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.lifecycle import ContractTicketStatus, FaultTicketStatus, TicketType
from ispdesk.persistence.repos import coverage as coverage_repo
from ispdesk.persistence.repos import tickets as tickets_repo
from ispdesk.services.coverage import CoverageStatus
from ispdesk.services.tickets import status_label


# Tickets still waiting on staff before anyone is dispatched.
PENDING_CONTRACT_STATUSES = [
    ContractTicketStatus.NEW.value,
    ContractTicketStatus.VALIDATION.value,
    ContractTicketStatus.CONTACTED.value,
]
PENDING_FAULT_STATUSES = [
    FaultTicketStatus.NEW.value,
    FaultTicketStatus.DIAGNOSIS.value,
    FaultTicketStatus.SCHEDULED.value,
]
ACTIVE_COVERAGE_STATUSES = [CoverageStatus.AVAILABLE.value, CoverageStatus.PARTIAL.value]


async def get_dashboard_stats(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    recent_limit: int = 5,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    start_of_day = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    start_of_month = start_of_day.replace(day=1)

    contract = TicketType.CONTRACT.value
    fault = TicketType.FAULT.value
    recent = await tickets_repo.list_recent_tickets(session, limit=recent_limit)
    return {
        "contract_tickets_today": await tickets_repo.count_tickets(
            session, ticket_type=contract, created_since=start_of_day
        ),
        "contract_tickets_pending": await tickets_repo.count_tickets(
            session, ticket_type=contract, statuses=PENDING_CONTRACT_STATUSES
        ),
        "fault_tickets_today": await tickets_repo.count_tickets(
            session, ticket_type=fault, created_since=start_of_day
        ),
        "fault_tickets_pending": await tickets_repo.count_tickets(
            session, ticket_type=fault, statuses=PENDING_FAULT_STATUSES
        ),
        "installations_this_month": await tickets_repo.count_tickets(
            session,
            ticket_type=contract,
            statuses=[ContractTicketStatus.INSTALLED.value],
            updated_since=start_of_month,
        ),
        "active_coverage_areas": await coverage_repo.count_covered_postal_codes(
            session, ACTIVE_COVERAGE_STATUSES
        ),
        "recent_tickets": [
            {
                "id": ticket.id,
                "folio": ticket.folio,
                "type": ticket.type,
                "full_name": ticket.full_name,
                "status": ticket.current_status,
                "status_label": status_label(ticket.type, ticket.current_status),
                "created_at": ticket.created_at,
            }
            for ticket in recent
        ],
    }
