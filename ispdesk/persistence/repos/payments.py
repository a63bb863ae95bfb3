from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.models import Payment


async def get_payment(
    session: AsyncSession, payment_id: str, *, for_update: bool = False
) -> Payment | None:
    stmt = select(Payment).where(Payment.id == payment_id)
    if for_update:
        # Serialize approve/reject/cancel on the same payment.
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
