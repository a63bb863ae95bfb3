from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.models import ServiceContract, ServicePackage, Ticket


async def list_packages(session: AsyncSession, *, include_inactive: bool = False) -> list[ServicePackage]:
    stmt = select(ServicePackage)
    if not include_inactive:
        stmt = stmt.where(ServicePackage.is_active.is_(True))
    stmt = stmt.order_by(ServicePackage.monthly_price, ServicePackage.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def package_in_use(session: AsyncSession, package_id: str) -> bool:
    # Contracts and contract requests keep a foreign key to the package.
    contract = await session.execute(
        select(ServiceContract.id).where(ServiceContract.package_id == package_id).limit(1)
    )
    if contract.first() is not None:
        return True
    ticket = await session.execute(select(Ticket.id).where(Ticket.package_id == package_id).limit(1))
    return ticket.first() is not None
