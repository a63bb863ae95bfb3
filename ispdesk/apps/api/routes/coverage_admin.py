from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.apps.api.deps import Principal, get_db, require_role
from ispdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ispdesk.apps.api.rate_limit import LIMIT_DEFAULT, rate_limited
from ispdesk.apps.api.response import SuccessEnvelope, success_response
from ispdesk.domain.models import Community, Municipality, PostalCode
from ispdesk.persistence.repos import coverage as coverage_repo
from ispdesk.services import coverage


router = APIRouter(
    prefix="/admin/coverage",
    tags=["coverage"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)


class MunicipalityCreateRequest(BaseModel):
    name: str = Field(min_length=2)
    state: str = "Chiapas"
    coverage_status: str | None = None
    is_active: bool = True

    model_config = {"extra": "forbid"}


class MunicipalityUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2)
    state: str | None = None
    coverage_status: str | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}


class MunicipalityResponse(BaseModel):
    id: str
    name: str
    state: str
    coverage_status: str
    is_active: bool
    created_at: datetime | None


class PostalCodeCreateRequest(BaseModel):
    code: str
    municipality_id: str
    coverage_status: str | None = None
    available_packages: list[str] | None = None
    notes: str | None = None
    is_active: bool = True

    model_config = {"extra": "forbid"}


class PostalCodeUpdateRequest(BaseModel):
    coverage_status: str | None = None
    available_packages: list[str] | None = None
    notes: str | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}


class PostalCodeResponse(BaseModel):
    id: str
    code: str
    municipality_id: str
    coverage_status: str
    available_packages: list[str] | None
    notes: str | None
    is_active: bool


class CommunityCreateRequest(BaseModel):
    postal_code_id: str
    name: str = Field(min_length=2)
    coverage_status: str | None = None
    estimated_date: date | None = None
    is_active: bool = True

    model_config = {"extra": "forbid"}


class CommunityUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2)
    coverage_status: str | None = None
    estimated_date: date | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}


class CommunityResponse(BaseModel):
    id: str
    postal_code_id: str
    name: str
    coverage_status: str
    estimated_date: date | None
    is_active: bool
    created_at: datetime | None


def municipality_response(municipality: Municipality) -> MunicipalityResponse:
    return MunicipalityResponse(
        id=municipality.id,
        name=municipality.name,
        state=municipality.state,
        coverage_status=municipality.coverage_status,
        is_active=municipality.is_active,
        created_at=municipality.created_at,
    )


def postal_code_response(record: PostalCode) -> PostalCodeResponse:
    return PostalCodeResponse(
        id=record.id,
        code=record.code,
        municipality_id=record.municipality_id,
        coverage_status=record.coverage_status,
        available_packages=record.available_packages,
        notes=record.notes,
        is_active=record.is_active,
    )


def community_response(community: Community) -> CommunityResponse:
    return CommunityResponse(
        id=community.id,
        postal_code_id=community.postal_code_id,
        name=community.name,
        coverage_status=community.coverage_status,
        estimated_date=community.estimated_date,
        is_active=community.is_active,
        created_at=community.created_at,
    )


@router.get("/municipalities", response_model=SuccessEnvelope[list[MunicipalityResponse]])
async def list_municipalities(
    request: Request,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        municipalities = await coverage_repo.list_municipalities(db)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing municipalities") from exc
    return success_response(
        request=request, data=[municipality_response(item) for item in municipalities]
    )


@router.post("/municipalities", status_code=201, response_model=SuccessEnvelope[MunicipalityResponse])
async def create_municipality(
    request: Request,
    payload: MunicipalityCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        municipality = await coverage.save_municipality(
            db, actor_id=principal.staff_id, changes=payload.model_dump()
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while saving municipality") from exc
    return success_response(request=request, data=municipality_response(municipality))


@router.patch("/municipalities/{municipality_id}", response_model=SuccessEnvelope[MunicipalityResponse])
async def update_municipality(
    municipality_id: str,
    request: Request,
    payload: MunicipalityUpdateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        municipality = await coverage.get_municipality_or_404(db, municipality_id)
        municipality = await coverage.save_municipality(
            db,
            actor_id=principal.staff_id,
            municipality=municipality,
            changes=payload.model_dump(exclude_unset=True),
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while saving municipality") from exc
    return success_response(request=request, data=municipality_response(municipality))


@router.get("/postal-codes", response_model=SuccessEnvelope[list[PostalCodeResponse]])
async def list_postal_codes(
    request: Request,
    municipality_id: str | None = Query(default=None),
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        records = await coverage_repo.list_postal_codes(db, municipality_id=municipality_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing postal codes") from exc
    return success_response(request=request, data=[postal_code_response(record) for record in records])


@router.post("/postal-codes", status_code=201, response_model=SuccessEnvelope[PostalCodeResponse])
async def create_postal_code(
    request: Request,
    payload: PostalCodeCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        record = await coverage.save_postal_code(
            db, actor_id=principal.staff_id, changes=payload.model_dump()
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while saving postal code") from exc
    return success_response(request=request, data=postal_code_response(record))


@router.patch("/postal-codes/{postal_code_id}", response_model=SuccessEnvelope[PostalCodeResponse])
async def update_postal_code(
    postal_code_id: str,
    request: Request,
    payload: PostalCodeUpdateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        record = await coverage.get_postal_code_or_404(db, postal_code_id)
        record = await coverage.save_postal_code(
            db,
            actor_id=principal.staff_id,
            record=record,
            changes=payload.model_dump(exclude_unset=True),
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while saving postal code") from exc
    return success_response(request=request, data=postal_code_response(record))


@router.get("/communities", response_model=SuccessEnvelope[list[CommunityResponse]])
async def list_communities(
    request: Request,
    postal_code_id: str | None = Query(default=None),
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        communities = await coverage_repo.list_communities(db, postal_code_id=postal_code_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing communities") from exc
    return success_response(request=request, data=[community_response(item) for item in communities])


@router.post("/communities", status_code=201, response_model=SuccessEnvelope[CommunityResponse])
async def create_community(
    request: Request,
    payload: CommunityCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        community = await coverage.save_community(
            db, actor_id=principal.staff_id, changes=payload.model_dump()
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while saving community") from exc
    return success_response(request=request, data=community_response(community))


@router.patch("/communities/{community_id}", response_model=SuccessEnvelope[CommunityResponse])
async def update_community(
    community_id: str,
    request: Request,
    payload: CommunityUpdateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        community = await coverage.get_community_or_404(db, community_id)
        community = await coverage.save_community(
            db,
            actor_id=principal.staff_id,
            community=community,
            changes=payload.model_dump(exclude_unset=True),
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while saving community") from exc
    return success_response(request=request, data=community_response(community))
