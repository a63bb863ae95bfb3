from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.apps.api.deps import Principal, get_db, require_role
from ispdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ispdesk.apps.api.rate_limit import LIMIT_DEFAULT, rate_limited
from ispdesk.apps.api.response import SuccessEnvelope, success_response
from ispdesk.apps.api.routes.work_orders import WorkOrderResponse, work_order_response
from ispdesk.domain.models import ServiceContract
from ispdesk.services import billing


router = APIRouter(
    prefix="/contracts",
    tags=["contracts"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)


class CustomerCreate(BaseModel):
    full_name: str = Field(min_length=3)
    phone: str = Field(pattern=r"^\d{10}$")
    alternate_phone: str | None = Field(default=None, pattern=r"^\d{10}$")
    email: str | None = None
    address: str = Field(min_length=10)
    location: str = Field(min_length=2)
    neighborhood: str | None = None
    references_text: str | None = None
    rfc: str | None = None

    model_config = {"extra": "forbid"}


class ContractCreateRequest(BaseModel):
    customer_id: str | None = None
    customer: CustomerCreate | None = None
    package_id: str
    payment_day: int = Field(ge=1, le=31)
    service_number: str | None = None
    monthly_fee: Decimal | None = Field(default=None, ge=0)
    installation_fee: Decimal | None = Field(default=None, ge=0)
    installation_date: date | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _one_customer_source(self) -> "ContractCreateRequest":
        if (self.customer_id is None) == (self.customer is None):
            raise ValueError("Provide exactly one of customer_id or customer")
        return self


class ContractActivateRequest(BaseModel):
    installed_modem: str | None = None
    installed_decoder: str | None = None


class ContractStatusRequest(BaseModel):
    status: str
    reason: str | None = None


class ContractResponse(BaseModel):
    id: str
    service_number: str
    customer_id: str
    package_id: str
    status: str
    monthly_fee: float
    installation_fee: float
    payment_day: int
    next_payment_date: date | None
    installed_modem: str | None
    installed_decoder: str | None
    installation_date: date | None
    cancellation_date: date | None
    notes: str | None
    created_at: datetime


class ContractCreatedResponse(BaseModel):
    contract: ContractResponse
    installation_order: WorkOrderResponse


class PaymentUrgencyResponse(BaseModel):
    tier: str
    message: str


class BillingStatusResponse(BaseModel):
    contract_id: str
    service_number: str
    status: str
    payment_day: int
    monthly_fee: float
    next_payment_date: date | None
    days_until_due: int | None
    urgency: PaymentUrgencyResponse | None


def contract_response(contract: ServiceContract) -> ContractResponse:
    return ContractResponse(
        id=contract.id,
        service_number=contract.service_number,
        customer_id=contract.customer_id,
        package_id=contract.package_id,
        status=contract.status,
        monthly_fee=float(contract.monthly_fee),
        installation_fee=float(contract.installation_fee),
        payment_day=contract.payment_day,
        next_payment_date=contract.next_payment_date,
        installed_modem=contract.installed_modem,
        installed_decoder=contract.installed_decoder,
        installation_date=contract.installation_date,
        cancellation_date=contract.cancellation_date,
        notes=contract.notes,
        created_at=contract.created_at,
    )


@router.post("", status_code=201, response_model=SuccessEnvelope[ContractCreatedResponse])
async def create_contract(
    request: Request,
    payload: ContractCreateRequest,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        contract, installation = await billing.create_contract(
            db,
            package_id=payload.package_id,
            payment_day=payload.payment_day,
            actor_id=principal.staff_id,
            customer_id=payload.customer_id,
            customer=payload.customer.model_dump() if payload.customer else None,
            service_number=payload.service_number,
            monthly_fee=payload.monthly_fee,
            installation_fee=payload.installation_fee,
            installation_date=payload.installation_date,
            notes=payload.notes,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while creating contract") from exc
    data = ContractCreatedResponse(
        contract=contract_response(contract),
        installation_order=work_order_response(installation),
    )
    return success_response(request=request, data=data)


@router.get("/{contract_id}", response_model=SuccessEnvelope[ContractResponse])
async def get_contract(
    contract_id: str,
    request: Request,
    principal: Principal = Depends(require_role("tech")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        contract = await billing.get_contract_or_404(db, contract_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching contract") from exc
    return success_response(request=request, data=contract_response(contract))


@router.get("/{contract_id}/billing", response_model=SuccessEnvelope[BillingStatusResponse])
async def get_billing_status(
    contract_id: str,
    request: Request,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        contract = await billing.get_contract_or_404(db, contract_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching contract") from exc
    return success_response(request=request, data=billing.contract_billing_status(contract))


@router.post("/{contract_id}/activate", response_model=SuccessEnvelope[ContractResponse])
async def activate_contract(
    contract_id: str,
    request: Request,
    payload: ContractActivateRequest | None = None,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    payload = payload or ContractActivateRequest()
    try:
        contract = await billing.get_contract_or_404(db, contract_id, for_update=True)
        contract = await billing.activate_contract(
            db,
            contract,
            actor_id=principal.staff_id,
            installed_modem=payload.installed_modem,
            installed_decoder=payload.installed_decoder,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while activating contract") from exc
    return success_response(request=request, data=contract_response(contract))


@router.patch("/{contract_id}/status", response_model=SuccessEnvelope[ContractResponse])
async def change_contract_status(
    contract_id: str,
    request: Request,
    payload: ContractStatusRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        contract = await billing.get_contract_or_404(db, contract_id, for_update=True)
        contract = await billing.change_contract_status(
            db,
            contract,
            new_status=payload.status,
            actor_id=principal.staff_id,
            reason=payload.reason,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while updating contract") from exc
    return success_response(request=request, data=contract_response(contract))
