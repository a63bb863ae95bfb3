from __future__ import annotations

from enum import Enum
import logging
import re
from typing import Any

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.models import Community, Municipality, PostalCode
from ispdesk.persistence.repos import coverage as coverage_repo


logger = logging.getLogger(__name__)


class CoverageStatus(str, Enum):
    AVAILABLE = "available"
    PARTIAL = "partial"
    COMING_SOON = "coming_soon"
    NOT_AVAILABLE = "not_available"


UNKNOWN_COVERAGE = "unknown"

COVERAGE_MESSAGES: dict[str, str] = {
    CoverageStatus.AVAILABLE.value: "¡Excelente! Tenemos cobertura completa en tu zona.",
    CoverageStatus.PARTIAL.value: (
        "Tenemos cobertura parcial en tu zona. Algunas colonias pueden no estar disponibles."
    ),
    CoverageStatus.COMING_SOON.value: (
        "Próximamente tendremos cobertura en tu zona. ¡Regístrate para ser notificado!"
    ),
    CoverageStatus.NOT_AVAILABLE.value: (
        "Actualmente no tenemos cobertura en tu zona. Estamos expandiendo nuestra red."
    ),
}
UNKNOWN_MESSAGE = (
    "No tenemos información de cobertura para este código postal. Contáctanos para verificar."
)
FALLBACK_MESSAGE = "Consulta la cobertura de tu zona."

_CONTRACTABLE = {CoverageStatus.AVAILABLE.value, CoverageStatus.PARTIAL.value}
_POSTAL_CODE = re.compile(r"^\d{5}$")

_MUNICIPALITY_FIELDS = frozenset({"name", "state", "coverage_status", "is_active"})
_POSTAL_CODE_FIELDS = frozenset({"coverage_status", "available_packages", "notes", "is_active"})
_COMMUNITY_FIELDS = frozenset({"name", "coverage_status", "estimated_date", "is_active"})
_NULLABLE_FIELDS = frozenset({"available_packages", "notes", "estimated_date"})


def _package_view(package) -> dict[str, Any]:
    return {
        "id": package.id,
        "name": package.name,
        "type": package.type,
        "speed_mbps": package.speed_mbps,
        "channels_count": package.channels_count,
        "monthly_price": package.monthly_price,
        "features": package.features or [],
    }


async def check_coverage(session: AsyncSession, postal_code: str | None) -> dict[str, Any]:
    if not postal_code:
        raise HTTPException(
            status_code=400,
            detail={"code": "POSTAL_CODE_REQUIRED", "message": "Se requiere código postal"},
        )
    postal_code = postal_code.strip()
    if not _POSTAL_CODE.match(postal_code):
        raise HTTPException(
            status_code=400,
            detail={"code": "POSTAL_CODE_INVALID", "message": "Código postal inválido"},
        )

    record = await coverage_repo.get_postal_code(session, postal_code)
    if record is None:
        # Unlisted codes may still be reachable, so the customer is pointed to sales.
        return {
            "found": False,
            "postal_code": postal_code,
            "coverage_status": UNKNOWN_COVERAGE,
            "message": UNKNOWN_MESSAGE,
            "contact_recommended": True,
        }

    status = record.coverage_status
    packages = None
    if status in _CONTRACTABLE:
        packages = [
            _package_view(package)
            for package in await coverage_repo.list_active_packages(session, record.available_packages)
        ]
    municipality = await coverage_repo.get_municipality(session, record.municipality_id)
    communities = await coverage_repo.list_communities(
        session, postal_code_id=record.id, active_only=True
    )
    logger.debug("coverage_checked postal_code=%s status=%s", postal_code, status)
    return {
        "found": True,
        "postal_code": postal_code,
        "coverage_status": status,
        "message": COVERAGE_MESSAGES.get(status, FALLBACK_MESSAGE),
        "municipality": (
            {"id": municipality.id, "name": municipality.name, "state": municipality.state}
            if municipality is not None
            else None
        ),
        "communities": [
            {
                "id": community.id,
                "name": community.name,
                "coverage_status": community.coverage_status,
                "estimated_date": community.estimated_date,
            }
            for community in communities
        ],
        "packages": packages,
        "can_contract": status in _CONTRACTABLE,
        "contact_recommended": status != CoverageStatus.AVAILABLE.value,
    }


def _coverage_status_or_422(value: str) -> str:
    try:
        return CoverageStatus(value).value
    except ValueError as exc:
        raise HTTPException(
            status_code=422,
            detail={
                "code": "COVERAGE_STATUS_INVALID",
                "message": f"Unknown coverage status: {value}",
                "field": "coverage_status",
            },
        ) from exc


def _conflict(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=409, detail={"code": code, "message": message})


def _apply(record: Any, changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise HTTPException(
            status_code=422,
            detail={"code": "FIELD_NOT_EDITABLE", "message": f"Cannot edit: {sorted(unknown)}"},
        )
    cleared = sorted(key for key, value in changes.items() if value is None and key not in _NULLABLE_FIELDS)
    if cleared:
        raise HTTPException(
            status_code=422,
            detail={"code": "FIELD_REQUIRED", "message": f"{cleared[0]} cannot be empty", "field": cleared[0]},
        )
    if "coverage_status" in changes:
        changes["coverage_status"] = _coverage_status_or_422(changes["coverage_status"])
    for key, value in changes.items():
        setattr(record, key, value)


async def get_municipality_or_404(session: AsyncSession, municipality_id: str) -> Municipality:
    municipality = await coverage_repo.get_municipality(session, municipality_id)
    if municipality is None:
        raise HTTPException(status_code=404, detail="Municipality not found")
    return municipality


async def get_postal_code_or_404(session: AsyncSession, postal_code_id: str) -> PostalCode:
    record = await coverage_repo.get_postal_code_by_id(session, postal_code_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Postal code not found")
    return record


async def get_community_or_404(session: AsyncSession, community_id: str) -> Community:
    community = await coverage_repo.get_community(session, community_id)
    if community is None:
        raise HTTPException(status_code=404, detail="Community not found")
    return community


async def save_municipality(
    session: AsyncSession,
    *,
    actor_id: str | None,
    municipality: Municipality | None = None,
    changes: dict[str, Any],
) -> Municipality:
    """Create a municipality, or apply ``changes`` to an existing one."""
    current_name = municipality.name if municipality is not None else None
    current_state = municipality.state if municipality is not None else "Chiapas"
    name = changes.get("name") or current_name
    state = changes.get("state") or current_state
    # Uniqueness is checked before attributes change, ahead of any autoflush.
    if await coverage_repo.municipality_exists(
        session,
        name=name,
        state=state,
        exclude_id=municipality.id if municipality is not None else None,
    ):
        raise _conflict("MUNICIPALITY_EXISTS", "A municipality with that name already exists")

    if municipality is None:
        municipality = Municipality(
            name=name,
            state=state,
            coverage_status=_coverage_status_or_422(
                changes.get("coverage_status") or CoverageStatus.NOT_AVAILABLE.value
            ),
            is_active=changes.get("is_active", True),
        )
        session.add(municipality)
    else:
        _apply(municipality, changes, _MUNICIPALITY_FIELDS)
    await session.commit()
    logger.info(
        "municipality_saved id=%s status=%s actor=%s",
        municipality.id,
        municipality.coverage_status,
        actor_id,
    )
    return municipality


async def save_postal_code(
    session: AsyncSession,
    *,
    actor_id: str | None,
    record: PostalCode | None = None,
    changes: dict[str, Any],
) -> PostalCode:
    """Create a postal code under a municipality, or edit its coverage."""
    if record is None:
        code = changes["code"]
        if not _POSTAL_CODE.match(code):
            raise HTTPException(
                status_code=422,
                detail={
                    "code": "POSTAL_CODE_INVALID",
                    "message": "Postal code must be five digits",
                    "field": "code",
                },
            )
        await get_municipality_or_404(session, changes["municipality_id"])
        if await coverage_repo.postal_code_exists(session, code):
            raise _conflict("POSTAL_CODE_EXISTS", f"Postal code {code} is already registered")
        record = PostalCode(
            code=code,
            municipality_id=changes["municipality_id"],
            coverage_status=_coverage_status_or_422(
                changes.get("coverage_status") or CoverageStatus.NOT_AVAILABLE.value
            ),
            available_packages=changes.get("available_packages"),
            notes=changes.get("notes"),
            is_active=changes.get("is_active", True),
        )
        session.add(record)
    else:
        # The code and its municipality are fixed once created.
        _apply(record, changes, _POSTAL_CODE_FIELDS)
    await session.commit()
    logger.info(
        "postal_code_saved code=%s status=%s actor=%s", record.code, record.coverage_status, actor_id
    )
    return record


async def save_community(
    session: AsyncSession,
    *,
    actor_id: str | None,
    community: Community | None = None,
    changes: dict[str, Any],
) -> Community:
    if community is None:
        postal_code_id = changes["postal_code_id"]
        await get_postal_code_or_404(session, postal_code_id)
    else:
        postal_code_id = community.postal_code_id
    name = changes.get("name") or (community.name if community is not None else None)
    if await coverage_repo.community_exists(
        session,
        postal_code_id=postal_code_id,
        name=name,
        exclude_id=community.id if community is not None else None,
    ):
        raise _conflict("COMMUNITY_EXISTS", "That postal code already lists a community with this name")

    if community is None:
        community = Community(
            postal_code_id=postal_code_id,
            name=name,
            coverage_status=_coverage_status_or_422(
                changes.get("coverage_status") or CoverageStatus.NOT_AVAILABLE.value
            ),
            estimated_date=changes.get("estimated_date"),
            is_active=changes.get("is_active", True),
        )
        session.add(community)
    else:
        _apply(community, changes, _COMMUNITY_FIELDS)
    await session.commit()
    logger.info(
        "community_saved id=%s postal_code_id=%s status=%s actor=%s",
        community.id,
        community.postal_code_id,
        community.coverage_status,
        actor_id,
    )
    return community
