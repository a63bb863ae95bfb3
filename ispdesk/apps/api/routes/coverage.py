from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.apps.api.deps import get_db
from ispdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ispdesk.apps.api.rate_limit import LIMIT_COVERAGE_CHECK, rate_limited
from ispdesk.apps.api.response import SuccessEnvelope, success_response
from ispdesk.services.coverage import check_coverage


router = APIRouter(prefix="/coverage", tags=["coverage"], responses=DEFAULT_ERROR_RESPONSES)


class CoveragePackage(BaseModel):
    id: str
    name: str
    type: str
    speed_mbps: int | None = None
    channels_count: int | None = None
    monthly_price: float
    features: list[str]


class CoverageMunicipality(BaseModel):
    id: str
    name: str
    state: str


class CoverageCommunity(BaseModel):
    id: str
    name: str
    coverage_status: str
    estimated_date: date | None = None


class CoverageResponse(BaseModel):
    found: bool
    postal_code: str
    coverage_status: str
    message: str
    municipality: CoverageMunicipality | None = None
    communities: list[CoverageCommunity] = Field(default_factory=list)
    packages: list[CoveragePackage] | None = None
    can_contract: bool = False
    contact_recommended: bool


@router.get(
    "/check",
    response_model=SuccessEnvelope[CoverageResponse],
    dependencies=[Depends(rate_limited(LIMIT_COVERAGE_CHECK))],
)
async def coverage_check(
    request: Request,
    cp: str | None = Query(default=None, description="Five-digit postal code"),
    postal_code: str | None = Query(default=None, include_in_schema=False),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        result = await check_coverage(db, cp or postal_code)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while checking coverage") from exc
    return success_response(request=request, data=result)
