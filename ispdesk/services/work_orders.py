from __future__ import annotations

from datetime import date, datetime, timezone
import logging

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.lifecycle import WorkOrderStatus, validate_work_order_transition
from ispdesk.domain.models import ServiceContract, WorkOrder
from ispdesk.persistence.repos import contracts as contracts_repo
from ispdesk.persistence.repos import staff as staff_repo
from ispdesk.services.lifecycle import commit_or_conflict, ensure_allowed


logger = logging.getLogger(__name__)


async def get_work_order_or_404(
    session: AsyncSession, work_order_id: str, *, for_update: bool = False
) -> WorkOrder:
    order = await contracts_repo.get_work_order(session, work_order_id, for_update=for_update)
    if order is None:
        raise HTTPException(status_code=404, detail="Work order not found")
    return order


async def _ensure_assignee(session: AsyncSession, staff_id: str) -> None:
    assignee = await staff_repo.get_staff_user(session, staff_id)
    if assignee is None or not assignee.is_active:
        raise HTTPException(
            status_code=422,
            detail={"code": "ASSIGNEE_INVALID", "message": "Assignee must be an active staff user"},
        )


async def create_work_order(
    session: AsyncSession,
    *,
    contract: ServiceContract,
    order_type: str,
    actor_id: str | None,
    priority: str = "normal",
    assigned_to: str | None = None,
    scheduled_date: date | None = None,
    description: str | None = None,
) -> WorkOrder:
    if assigned_to is not None:
        await _ensure_assignee(session, assigned_to)
    order = WorkOrder(
        contract_id=contract.id,
        type=order_type,
        status=WorkOrderStatus.PENDING.value,
        priority=priority,
        assigned_to=assigned_to,
        scheduled_date=scheduled_date,
        description=description,
        created_by=actor_id,
    )
    session.add(order)
    await session.commit()
    logger.info(
        "work_order_created contract=%s type=%s actor=%s",
        contract.service_number,
        order_type,
        actor_id,
    )
    return order


async def change_work_order_status(
    session: AsyncSession,
    order: WorkOrder,
    *,
    new_status: str,
    actor_id: str | None,
    assigned_to: str | None = None,
    resolution_notes: str | None = None,
) -> WorkOrder:
    ensure_allowed(validate_work_order_transition(order, new_status))
    if assigned_to is not None:
        await _ensure_assignee(session, assigned_to)
        order.assigned_to = assigned_to
    if new_status == WorkOrderStatus.ASSIGNED.value and order.assigned_to is None:
        raise HTTPException(
            status_code=422,
            detail={
                "code": "ASSIGNEE_REQUIRED",
                "message": "An assigned work order needs a technician",
                "field": "assigned_to",
            },
        )

    previous_status = order.status
    order.status = new_status
    # completed_date is set exactly while the order is completed.
    if new_status == WorkOrderStatus.COMPLETED.value:
        order.completed_date = datetime.now(timezone.utc)
    else:
        order.completed_date = None
    if resolution_notes is not None:
        order.resolution_notes = resolution_notes
    await commit_or_conflict(session, entity="work order")
    logger.info(
        "work_order_status_changed id=%s from=%s to=%s actor=%s",
        order.id,
        previous_status,
        new_status,
        actor_id,
    )
    return order
