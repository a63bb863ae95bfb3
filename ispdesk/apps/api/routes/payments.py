from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.apps.api.deps import Principal, get_db, require_role
from ispdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ispdesk.apps.api.rate_limit import LIMIT_DEFAULT, rate_limited
from ispdesk.apps.api.response import SuccessEnvelope, success_response
from ispdesk.domain.lifecycle import PaymentMethod, PaymentType
from ispdesk.domain.models import Payment
from ispdesk.services import billing


router = APIRouter(
    prefix="/payments",
    tags=["payments"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(LIMIT_DEFAULT))],
)


class PaymentCreateRequest(BaseModel):
    contract_id: str
    amount: Decimal = Field(gt=0)
    payment_method: PaymentMethod
    payment_type: PaymentType = PaymentType.MONTHLY
    period_month: int | None = Field(default=None, ge=1, le=12)
    period_year: int | None = Field(default=None, ge=2000)
    receipt_url: str | None = None
    notes: str | None = None


class PaymentResolutionRequest(BaseModel):
    reason: str | None = None


class PaymentResponse(BaseModel):
    id: str
    contract_id: str
    amount: float
    payment_method: str
    payment_type: str
    period_month: int | None
    period_year: int | None
    status: str
    receipt_url: str | None
    paid_at: datetime | None
    processed_by: str | None
    notes: str | None
    created_at: datetime


class PaymentApprovedResponse(BaseModel):
    payment: PaymentResponse
    next_payment_date: date | None


def _to_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        contract_id=payment.contract_id,
        amount=float(payment.amount),
        payment_method=payment.payment_method,
        payment_type=payment.payment_type,
        period_month=payment.period_month,
        period_year=payment.period_year,
        status=payment.status,
        receipt_url=payment.receipt_url,
        paid_at=payment.paid_at,
        processed_by=payment.processed_by,
        notes=payment.notes,
        created_at=payment.created_at,
    )


@router.post("", status_code=201, response_model=SuccessEnvelope[PaymentResponse])
async def record_payment(
    request: Request,
    payload: PaymentCreateRequest,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        contract = await billing.get_contract_or_404(db, payload.contract_id, for_update=True)
        payment = await billing.record_payment(
            db,
            contract=contract,
            amount=payload.amount,
            payment_method=payload.payment_method.value,
            payment_type=payload.payment_type.value,
            actor_id=principal.staff_id,
            period_month=payload.period_month,
            period_year=payload.period_year,
            receipt_url=payload.receipt_url,
            notes=payload.notes,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while recording payment") from exc
    return success_response(request=request, data=_to_response(payment))


@router.post("/{payment_id}/approve", response_model=SuccessEnvelope[PaymentApprovedResponse])
async def approve_payment(
    payment_id: str,
    request: Request,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        payment = await billing.get_payment_or_404(db, payment_id, for_update=True)
        payment, contract = await billing.approve_payment(db, payment, actor_id=principal.staff_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while approving payment") from exc
    data = PaymentApprovedResponse(
        payment=_to_response(payment),
        next_payment_date=contract.next_payment_date,
    )
    return success_response(request=request, data=data)


@router.post("/{payment_id}/reject", response_model=SuccessEnvelope[PaymentResponse])
async def reject_payment(
    payment_id: str,
    request: Request,
    payload: PaymentResolutionRequest | None = None,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        payment = await billing.get_payment_or_404(db, payment_id, for_update=True)
        payment = await billing.reject_payment(
            db, payment, actor_id=principal.staff_id, reason=payload.reason if payload else None
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while rejecting payment") from exc
    return success_response(request=request, data=_to_response(payment))


@router.post("/{payment_id}/cancel", response_model=SuccessEnvelope[PaymentResponse])
async def cancel_payment(
    payment_id: str,
    request: Request,
    payload: PaymentResolutionRequest | None = None,
    principal: Principal = Depends(require_role("counter")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        payment = await billing.get_payment_or_404(db, payment_id, for_update=True)
        payment = await billing.cancel_payment(
            db, payment, actor_id=principal.staff_id, reason=payload.reason if payload else None
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while cancelling payment") from exc
    return success_response(request=request, data=_to_response(payment))
