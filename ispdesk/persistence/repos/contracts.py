from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.models import Customer, ServiceContract, ServicePackage, WorkOrder


async def get_contract(
    session: AsyncSession, contract_id: str, *, for_update: bool = False
) -> ServiceContract | None:
    stmt = select(ServiceContract).where(ServiceContract.id == contract_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def service_number_exists(session: AsyncSession, service_number: str) -> bool:
    result = await session.execute(
        select(ServiceContract.id).where(ServiceContract.service_number == service_number)
    )
    return result.first() is not None


async def get_customer(session: AsyncSession, customer_id: str) -> Customer | None:
    result = await session.execute(select(Customer).where(Customer.id == customer_id))
    return result.scalar_one_or_none()


async def get_package(session: AsyncSession, package_id: str) -> ServicePackage | None:
    result = await session.execute(select(ServicePackage).where(ServicePackage.id == package_id))
    return result.scalar_one_or_none()


async def get_work_order(
    session: AsyncSession, work_order_id: str, *, for_update: bool = False
) -> WorkOrder | None:
    stmt = select(WorkOrder).where(WorkOrder.id == work_order_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_work_orders(session: AsyncSession, contract_id: str) -> list[WorkOrder]:
    result = await session.execute(
        select(WorkOrder)
        .where(WorkOrder.contract_id == contract_id)
        .order_by(WorkOrder.created_at, WorkOrder.id)
    )
    return list(result.scalars().all())
