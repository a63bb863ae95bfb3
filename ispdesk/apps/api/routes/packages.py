from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.apps.api.deps import get_db
from ispdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ispdesk.apps.api.rate_limit import LIMIT_DEFAULT, rate_limited
from ispdesk.apps.api.response import SuccessEnvelope, success_response
from ispdesk.domain.models import ServicePackage
from ispdesk.services import packages as packages_service


router = APIRouter(
    prefix="/packages",
    tags=["packages"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)


class PublicPackage(BaseModel):
    id: str
    name: str
    type: str
    speed_mbps: int | None
    channels_count: int | None
    monthly_price: float
    installation_fee: float
    description: str | None
    features: list[str]


def public_package(package: ServicePackage) -> PublicPackage:
    return PublicPackage(
        id=package.id,
        name=package.name,
        type=package.type,
        speed_mbps=package.speed_mbps,
        channels_count=package.channels_count,
        monthly_price=float(package.monthly_price),
        installation_fee=float(package.installation_fee or 0),
        description=package.description,
        features=package.features or [],
    )


@router.get("", response_model=SuccessEnvelope[list[PublicPackage]])
async def list_public_packages(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    # Only active packages are offered, cheapest first.
    try:
        packages = await packages_service.list_packages(db)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing packages") from exc
    return success_response(request=request, data=[public_package(package) for package in packages])
