"""Service package catalog: the plans customers can contract."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
import logging
from typing import Any

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.models import ServicePackage
from ispdesk.persistence.repos import contracts as contracts_repo
from ispdesk.persistence.repos import packages as packages_repo


logger = logging.getLogger(__name__)


class PackageType(str, Enum):
    INTERNET = "internet"
    TV = "tv"
    COMBO = "combo"


_EDITABLE_FIELDS = frozenset(
    {
        "name",
        "type",
        "speed_mbps",
        "channels_count",
        "monthly_price",
        "installation_fee",
        "description",
        "features",
        "is_active",
    }
)
_REQUIRED_FIELDS = frozenset({"name", "type", "monthly_price", "installation_fee", "is_active"})


async def list_packages(session: AsyncSession, *, include_inactive: bool = False) -> list[ServicePackage]:
    return await packages_repo.list_packages(session, include_inactive=include_inactive)


async def get_package_or_404(session: AsyncSession, package_id: str) -> ServicePackage:
    package = await contracts_repo.get_package(session, package_id)
    if package is None:
        raise HTTPException(status_code=404, detail="Package not found")
    return package


def _check_components(package_type: str, speed_mbps: int | None, channels_count: int | None) -> None:
    # Internet needs a speed, TV a channel count, combos both.
    missing = None
    if package_type in {PackageType.INTERNET.value, PackageType.COMBO.value} and not speed_mbps:
        missing = "speed_mbps"
    elif package_type in {PackageType.TV.value, PackageType.COMBO.value} and not channels_count:
        missing = "channels_count"
    if missing is not None:
        raise HTTPException(
            status_code=422,
            detail={
                "code": "PACKAGE_INCOMPLETE",
                "message": f"{package_type} packages require {missing}",
                "field": missing,
            },
        )


async def create_package(
    session: AsyncSession,
    *,
    name: str,
    package_type: str,
    monthly_price: Decimal,
    actor_id: str | None,
    installation_fee: Decimal = Decimal("0"),
    speed_mbps: int | None = None,
    channels_count: int | None = None,
    description: str | None = None,
    features: list[str] | None = None,
    is_active: bool = True,
) -> ServicePackage:
    _check_components(package_type, speed_mbps, channels_count)
    package = ServicePackage(
        name=name,
        type=package_type,
        speed_mbps=speed_mbps,
        channels_count=channels_count,
        monthly_price=monthly_price,
        installation_fee=installation_fee,
        description=description,
        features=features or [],
        is_active=is_active,
    )
    session.add(package)
    await session.commit()
    logger.info("package_created id=%s type=%s actor=%s", package.id, package_type, actor_id)
    return package


async def update_package(
    session: AsyncSession,
    package: ServicePackage,
    *,
    changes: dict[str, Any],
    actor_id: str | None,
) -> ServicePackage:
    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise HTTPException(
            status_code=422,
            detail={"code": "PACKAGE_FIELD_INVALID", "message": f"Cannot edit: {sorted(unknown)}"},
        )
    cleared = sorted(key for key in _REQUIRED_FIELDS & set(changes) if changes[key] is None)
    if cleared:
        raise HTTPException(
            status_code=422,
            detail={
                "code": "PACKAGE_FIELD_INVALID",
                "message": f"{cleared[0]} cannot be empty",
                "field": cleared[0],
            },
        )
    _check_components(
        changes.get("type", package.type),
        changes.get("speed_mbps", package.speed_mbps),
        changes.get("channels_count", package.channels_count),
    )
    for key, value in changes.items():
        setattr(package, key, value)
    await session.commit()
    logger.info("package_updated id=%s fields=%s actor=%s", package.id, ",".join(sorted(changes)), actor_id)
    return package


async def toggle_package(session: AsyncSession, package: ServicePackage, *, actor_id: str | None) -> ServicePackage:
    package.is_active = not package.is_active
    await session.commit()
    logger.info("package_toggled id=%s is_active=%s actor=%s", package.id, package.is_active, actor_id)
    return package


async def delete_package(session: AsyncSession, package: ServicePackage, *, actor_id: str | None) -> None:
    if await packages_repo.package_in_use(session, package.id):
        raise HTTPException(
            status_code=409,
            detail={
                "code": "PACKAGE_IN_USE",
                "message": "Package is referenced by contracts or requests; deactivate it instead",
            },
        )
    await session.delete(package)
    await session.commit()
    logger.info("package_deleted id=%s actor=%s", package.id, actor_id)
