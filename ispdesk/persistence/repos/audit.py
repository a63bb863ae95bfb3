from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.models import AuditLog


async def list_logs(
    session: AsyncSession,
    *,
    table_name: str | None = None,
    action: str | None = None,
    record_id: str | None = None,
    performed_by: str | None = None,
    performed_from: datetime | None = None,
    performed_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditLog]:
    stmt = select(AuditLog)
    if table_name:
        stmt = stmt.where(AuditLog.table_name == table_name)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if record_id:
        stmt = stmt.where(AuditLog.record_id == record_id)
    if performed_by:
        stmt = stmt.where(AuditLog.performed_by == performed_by)
    if performed_from:
        stmt = stmt.where(AuditLog.performed_at >= performed_from)
    if performed_to:
        stmt = stmt.where(AuditLog.performed_at <= performed_to)

    stmt = stmt.order_by(AuditLog.performed_at.desc(), AuditLog.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_log(session: AsyncSession, log_id: int) -> AuditLog | None:
    result = await session.execute(select(AuditLog).where(AuditLog.id == log_id))
    return result.scalar_one_or_none()
