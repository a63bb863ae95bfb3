from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.models import Community, Municipality, PostalCode, ServicePackage


async def get_postal_code(session: AsyncSession, code: str) -> PostalCode | None:
    result = await session.execute(
        select(PostalCode).where(PostalCode.code == code, PostalCode.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def get_postal_code_by_id(session: AsyncSession, postal_code_id: str) -> PostalCode | None:
    result = await session.execute(select(PostalCode).where(PostalCode.id == postal_code_id))
    return result.scalar_one_or_none()


async def postal_code_exists(session: AsyncSession, code: str) -> bool:
    # Inactive rows still hold the unique code.
    result = await session.execute(select(PostalCode.id).where(PostalCode.code == code))
    return result.first() is not None


async def list_postal_codes(
    session: AsyncSession, *, municipality_id: str | None = None
) -> list[PostalCode]:
    stmt = select(PostalCode)
    if municipality_id:
        stmt = stmt.where(PostalCode.municipality_id == municipality_id)
    result = await session.execute(stmt.order_by(PostalCode.code))
    return list(result.scalars().all())


async def count_covered_postal_codes(session: AsyncSession, statuses: list[str]) -> int:
    total = await session.scalar(
        select(func.count())
        .select_from(PostalCode)
        .where(PostalCode.is_active.is_(True), PostalCode.coverage_status.in_(statuses))
    )
    return int(total or 0)


async def get_municipality(session: AsyncSession, municipality_id: str) -> Municipality | None:
    result = await session.execute(select(Municipality).where(Municipality.id == municipality_id))
    return result.scalar_one_or_none()


async def municipality_exists(
    session: AsyncSession, *, name: str, state: str, exclude_id: str | None = None
) -> bool:
    stmt = select(Municipality.id).where(Municipality.name == name, Municipality.state == state)
    if exclude_id:
        stmt = stmt.where(Municipality.id != exclude_id)
    result = await session.execute(stmt)
    return result.first() is not None


async def list_municipalities(session: AsyncSession) -> list[Municipality]:
    result = await session.execute(select(Municipality).order_by(Municipality.name))
    return list(result.scalars().all())


async def get_community(session: AsyncSession, community_id: str) -> Community | None:
    result = await session.execute(select(Community).where(Community.id == community_id))
    return result.scalar_one_or_none()


async def list_communities(
    session: AsyncSession,
    *,
    postal_code_id: str | None = None,
    active_only: bool = False,
) -> list[Community]:
    stmt = select(Community)
    if postal_code_id:
        stmt = stmt.where(Community.postal_code_id == postal_code_id)
    if active_only:
        stmt = stmt.where(Community.is_active.is_(True))
    result = await session.execute(stmt.order_by(Community.name))
    return list(result.scalars().all())


async def community_exists(
    session: AsyncSession, *, postal_code_id: str, name: str, exclude_id: str | None = None
) -> bool:
    stmt = select(Community.id).where(
        Community.postal_code_id == postal_code_id, Community.name == name
    )
    if exclude_id:
        stmt = stmt.where(Community.id != exclude_id)
    result = await session.execute(stmt)
    return result.first() is not None


async def list_active_packages(
    session: AsyncSession, package_ids: list[str] | None = None
) -> list[ServicePackage]:
    stmt = select(ServicePackage).where(ServicePackage.is_active.is_(True))
    if package_ids:
        stmt = stmt.where(ServicePackage.id.in_(package_ids))
    stmt = stmt.order_by(ServicePackage.monthly_price, ServicePackage.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())
