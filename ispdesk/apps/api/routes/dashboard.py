from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.apps.api.deps import Principal, get_db, require_role
from ispdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ispdesk.apps.api.rate_limit import LIMIT_DEFAULT, rate_limited
from ispdesk.apps.api.response import SuccessEnvelope, success_response
from ispdesk.services.dashboard import get_dashboard_stats


router = APIRouter(
    prefix="/dashboard",
    tags=["dashboard"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)


class RecentTicket(BaseModel):
    id: str
    folio: str
    type: str
    full_name: str
    status: str
    status_label: str
    created_at: datetime | None


class DashboardStats(BaseModel):
    contract_tickets_today: int
    contract_tickets_pending: int
    fault_tickets_today: int
    fault_tickets_pending: int
    installations_this_month: int
    active_coverage_areas: int
    recent_tickets: list[RecentTicket]


@router.get("/stats", response_model=SuccessEnvelope[DashboardStats])
async def dashboard_stats(
    request: Request,
    principal: Principal = Depends(require_role("tech")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        stats = await get_dashboard_stats(db)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while computing dashboard stats") from exc
    return success_response(request=request, data=stats)
