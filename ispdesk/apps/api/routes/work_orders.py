from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.apps.api.deps import Principal, get_db, require_role
from ispdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ispdesk.apps.api.rate_limit import LIMIT_DEFAULT, rate_limited
from ispdesk.apps.api.response import SuccessEnvelope, success_response
from ispdesk.domain.lifecycle import Priority, WorkOrderType
from ispdesk.domain.models import WorkOrder
from ispdesk.services import billing
from ispdesk.services import work_orders as work_orders_service


router = APIRouter(
    prefix="/work-orders",
    tags=["work-orders"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)


class WorkOrderCreateRequest(BaseModel):
    contract_id: str
    type: WorkOrderType
    priority: Priority = Priority.NORMAL
    assigned_to: str | None = None
    scheduled_date: date | None = None
    description: str | None = None


class WorkOrderStatusRequest(BaseModel):
    status: str
    assigned_to: str | None = None
    resolution_notes: str | None = None


class WorkOrderResponse(BaseModel):
    id: str
    contract_id: str
    type: str
    status: str
    priority: str
    assigned_to: str | None
    scheduled_date: date | None
    completed_date: datetime | None
    description: str | None
    resolution_notes: str | None
    created_at: datetime


def work_order_response(order: WorkOrder) -> WorkOrderResponse:
    return WorkOrderResponse(
        id=order.id,
        contract_id=order.contract_id,
        type=order.type,
        status=order.status,
        priority=order.priority,
        assigned_to=order.assigned_to,
        scheduled_date=order.scheduled_date,
        completed_date=order.completed_date,
        description=order.description,
        resolution_notes=order.resolution_notes,
        created_at=order.created_at,
    )


@router.post("", status_code=201, response_model=SuccessEnvelope[WorkOrderResponse])
async def create_work_order(
    request: Request,
    payload: WorkOrderCreateRequest,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        contract = await billing.get_contract_or_404(db, payload.contract_id)
        order = await work_orders_service.create_work_order(
            db,
            contract=contract,
            order_type=payload.type.value,
            actor_id=principal.staff_id,
            priority=payload.priority.value,
            assigned_to=payload.assigned_to,
            scheduled_date=payload.scheduled_date,
            description=payload.description,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while creating work order") from exc
    return success_response(request=request, data=work_order_response(order))


@router.patch("/{work_order_id}/status", response_model=SuccessEnvelope[WorkOrderResponse])
async def change_work_order_status(
    work_order_id: str,
    request: Request,
    payload: WorkOrderStatusRequest,
    principal: Principal = Depends(require_role("tech")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        order = await work_orders_service.get_work_order_or_404(db, work_order_id, for_update=True)
        order = await work_orders_service.change_work_order_status(
            db,
            order,
            new_status=payload.status,
            actor_id=principal.staff_id,
            assigned_to=payload.assigned_to,
            resolution_notes=payload.resolution_notes,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while updating work order") from exc
    return success_response(request=request, data=work_order_response(order))
