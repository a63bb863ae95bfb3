from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.apps.api.deps import Principal, get_db, require_role
from ispdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ispdesk.apps.api.rate_limit import LIMIT_DEFAULT, rate_limited
from ispdesk.apps.api.response import SuccessEnvelope, success_response
from ispdesk.domain.lifecycle import AuditAction
from ispdesk.persistence.repos import audit as audit_repo


router = APIRouter(
    prefix="/audit",
    tags=["audit"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)


class AuditLogResponse(BaseModel):
    id: int
    table_name: str
    record_id: str
    action: str
    old_data: dict[str, Any] | None
    new_data: dict[str, Any] | None
    performed_by: str | None
    performed_at: str


class AuditLogsPage(BaseModel):
    items: list[AuditLogResponse]
    next_offset: int | None


def _to_response(row) -> AuditLogResponse:
    return AuditLogResponse(
        id=row.id,
        table_name=row.table_name,
        record_id=row.record_id,
        action=row.action,
        old_data=row.old_data,
        new_data=row.new_data,
        performed_by=row.performed_by,
        performed_at=row.performed_at.isoformat(),
    )


@router.get("/logs", response_model=SuccessEnvelope[AuditLogsPage])
async def list_audit_logs(
    request: Request,
    table_name: str | None = Query(default=None, alias="table"),
    action: AuditAction | None = None,
    record_id: str | None = None,
    performed_by: str | None = None,
    performed_from: datetime | None = Query(default=None, alias="from"),
    performed_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        rows = await audit_repo.list_logs(
            db,
            table_name=table_name,
            action=action.value if action else None,
            record_id=record_id,
            performed_by=performed_by,
            performed_from=performed_from,
            performed_to=performed_to,
            offset=offset,
            limit=limit + 1,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching audit logs") from exc

    next_offset = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_offset = offset + limit

    page = AuditLogsPage(items=[_to_response(row) for row in rows], next_offset=next_offset)
    return success_response(request=request, data=page)


@router.get("/logs/{log_id}", response_model=SuccessEnvelope[AuditLogResponse])
async def get_audit_log(
    log_id: int,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        row = await audit_repo.get_log(db, log_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching audit log") from exc
    if row is None:
        raise HTTPException(status_code=404, detail="Audit log not found")
    return success_response(request=request, data=_to_response(row))
