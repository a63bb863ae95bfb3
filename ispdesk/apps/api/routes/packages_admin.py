from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.apps.api.deps import Principal, get_db, require_role
from ispdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ispdesk.apps.api.rate_limit import LIMIT_DEFAULT, rate_limited
from ispdesk.apps.api.response import SuccessEnvelope, success_response
from ispdesk.domain.models import ServicePackage
from ispdesk.services import packages as packages_service
from ispdesk.services.packages import PackageType


router = APIRouter(
    prefix="/admin/packages",
    tags=["packages"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)


class PackageCreateRequest(BaseModel):
    name: str = Field(min_length=2)
    type: PackageType
    speed_mbps: int | None = Field(default=None, gt=0)
    channels_count: int | None = Field(default=None, gt=0)
    monthly_price: Decimal = Field(ge=0)
    installation_fee: Decimal = Field(default=Decimal("0"), ge=0)
    description: str | None = None
    features: list[str] = Field(default_factory=list)
    is_active: bool = True

    model_config = {"extra": "forbid"}


class PackageUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2)
    type: PackageType | None = None
    speed_mbps: int | None = Field(default=None, gt=0)
    channels_count: int | None = Field(default=None, gt=0)
    monthly_price: Decimal | None = Field(default=None, ge=0)
    installation_fee: Decimal | None = Field(default=None, ge=0)
    description: str | None = None
    features: list[str] | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid", "use_enum_values": True}


class PackageResponse(BaseModel):
    id: str
    name: str
    type: str
    speed_mbps: int | None
    channels_count: int | None
    monthly_price: float
    installation_fee: float
    description: str | None
    features: list[str]
    is_active: bool
    created_at: datetime | None


class PackageDeletedResponse(BaseModel):
    id: str
    deleted: bool


def package_response(package: ServicePackage) -> PackageResponse:
    return PackageResponse(
        id=package.id,
        name=package.name,
        type=package.type,
        speed_mbps=package.speed_mbps,
        channels_count=package.channels_count,
        monthly_price=float(package.monthly_price),
        installation_fee=float(package.installation_fee or 0),
        description=package.description,
        features=package.features or [],
        is_active=package.is_active,
        created_at=package.created_at,
    )


@router.get("", response_model=SuccessEnvelope[list[PackageResponse]])
async def list_packages(
    request: Request,
    include_inactive: bool = Query(default=True),
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        packages = await packages_service.list_packages(db, include_inactive=include_inactive)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing packages") from exc
    return success_response(request=request, data=[package_response(package) for package in packages])


@router.get("/{package_id}", response_model=SuccessEnvelope[PackageResponse])
async def get_package(
    package_id: str,
    request: Request,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        package = await packages_service.get_package_or_404(db, package_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching package") from exc
    return success_response(request=request, data=package_response(package))


@router.post("", status_code=201, response_model=SuccessEnvelope[PackageResponse])
async def create_package(
    request: Request,
    payload: PackageCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        package = await packages_service.create_package(
            db,
            name=payload.name,
            package_type=payload.type.value,
            monthly_price=payload.monthly_price,
            installation_fee=payload.installation_fee,
            speed_mbps=payload.speed_mbps,
            channels_count=payload.channels_count,
            description=payload.description,
            features=payload.features,
            is_active=payload.is_active,
            actor_id=principal.staff_id,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while creating package") from exc
    return success_response(request=request, data=package_response(package))


@router.patch("/{package_id}", response_model=SuccessEnvelope[PackageResponse])
async def update_package(
    package_id: str,
    request: Request,
    payload: PackageUpdateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        package = await packages_service.get_package_or_404(db, package_id)
        package = await packages_service.update_package(
            db,
            package,
            changes=payload.model_dump(exclude_unset=True),
            actor_id=principal.staff_id,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while updating package") from exc
    return success_response(request=request, data=package_response(package))


@router.post("/{package_id}/toggle", response_model=SuccessEnvelope[PackageResponse])
async def toggle_package(
    package_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        package = await packages_service.get_package_or_404(db, package_id)
        package = await packages_service.toggle_package(db, package, actor_id=principal.staff_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while updating package") from exc
    return success_response(request=request, data=package_response(package))


@router.delete("/{package_id}", response_model=SuccessEnvelope[PackageDeletedResponse])
async def delete_package(
    package_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        package = await packages_service.get_package_or_404(db, package_id)
        await packages_service.delete_package(db, package, actor_id=principal.staff_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while deleting package") from exc
    return success_response(request=request, data=PackageDeletedResponse(id=package_id, deleted=True))
