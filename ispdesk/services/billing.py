"""Service contracts and their payments.

Contracts start in ``pending_installation`` together with an installation
work order, become ``active`` once that order is completed, and from then on
carry a ``next_payment_date`` that approved payments push forward.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
import logging
from typing import Any

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.lifecycle import (
    ContractStatus,
    PaymentStatus,
    WorkOrderStatus,
    WorkOrderType,
    compute_payment_urgency,
    days_until,
    next_payment_date,
    validate_contract_activation,
    validate_contract_transition,
    validate_payment_approval,
    validate_payment_resolution,
)
from ispdesk.domain.models import Customer, Payment, ServiceContract, WorkOrder
from ispdesk.persistence.repos import contracts as contracts_repo
from ispdesk.persistence.repos import payments as payments_repo
from ispdesk.services.folios import SERVICE_NUMBER_PREFIX, generate_unique_code
from ispdesk.services.lifecycle import commit_or_conflict, ensure_allowed


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def get_contract_or_404(
    session: AsyncSession, contract_id: str, *, for_update: bool = False
) -> ServiceContract:
    contract = await contracts_repo.get_contract(session, contract_id, for_update=for_update)
    if contract is None:
        raise HTTPException(status_code=404, detail="Contract not found")
    return contract


async def get_payment_or_404(
    session: AsyncSession, payment_id: str, *, for_update: bool = False
) -> Payment:
    payment = await payments_repo.get_payment(session, payment_id, for_update=for_update)
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


async def create_contract(
    session: AsyncSession,
    *,
    package_id: str,
    payment_day: int,
    actor_id: str | None,
    customer_id: str | None = None,
    customer: dict[str, Any] | None = None,
    service_number: str | None = None,
    monthly_fee: Decimal | None = None,
    installation_fee: Decimal | None = None,
    installation_date: date | None = None,
    notes: str | None = None,
) -> tuple[ServiceContract, WorkOrder]:
    package = await contracts_repo.get_package(session, package_id)
    if package is None or not package.is_active:
        raise HTTPException(
            status_code=422,
            detail={"code": "PACKAGE_INVALID", "message": "Package does not exist or is inactive"},
        )

    if customer_id is not None:
        owner = await contracts_repo.get_customer(session, customer_id)
        if owner is None:
            raise HTTPException(status_code=404, detail="Customer not found")
    elif customer is not None:
        owner = Customer(created_by=actor_id, **customer)
        session.add(owner)
        await session.flush()
    else:
        raise HTTPException(
            status_code=422,
            detail={"code": "CUSTOMER_REQUIRED", "message": "Provide customer_id or customer"},
        )

    if service_number:
        if await contracts_repo.service_number_exists(session, service_number):
            raise HTTPException(
                status_code=409,
                detail={"code": "SERVICE_NUMBER_TAKEN", "message": "Service number already in use"},
            )
    else:
        service_number = await generate_unique_code(
            SERVICE_NUMBER_PREFIX,
            lambda candidate: contracts_repo.service_number_exists(session, candidate),
        )

    contract = ServiceContract(
        service_number=service_number,
        customer_id=owner.id,
        package_id=package.id,
        status=ContractStatus.PENDING_INSTALLATION.value,
        monthly_fee=monthly_fee if monthly_fee is not None else package.monthly_price,
        installation_fee=installation_fee if installation_fee is not None else package.installation_fee,
        payment_day=payment_day,
        notes=notes,
        created_by=actor_id,
    )
    session.add(contract)
    await session.flush()

    installation = WorkOrder(
        contract_id=contract.id,
        type=WorkOrderType.INSTALLATION.value,
        status=WorkOrderStatus.PENDING.value,
        scheduled_date=installation_date,
        description="Instalación inicial del servicio",
        created_by=actor_id,
    )
    session.add(installation)
    await session.commit()
    logger.info(
        "contract_created service_number=%s customer=%s package=%s actor=%s",
        contract.service_number,
        owner.id,
        package.id,
        actor_id,
    )
    return contract, installation


async def activate_contract(
    session: AsyncSession,
    contract: ServiceContract,
    *,
    actor_id: str | None,
    today: date | None = None,
    installed_modem: str | None = None,
    installed_decoder: str | None = None,
) -> ServiceContract:
    today = today or date.today()
    work_orders = await contracts_repo.list_work_orders(session, contract.id)
    ensure_allowed(validate_contract_activation(contract, work_orders))

    contract.status = ContractStatus.ACTIVE.value
    contract.installation_date = today
    contract.next_payment_date = next_payment_date(contract.payment_day, today)
    if installed_modem is not None:
        contract.installed_modem = installed_modem
    if installed_decoder is not None:
        contract.installed_decoder = installed_decoder
    await commit_or_conflict(session, entity="contract")
    logger.info(
        "contract_activated service_number=%s next_payment_date=%s actor=%s",
        contract.service_number,
        contract.next_payment_date,
        actor_id,
    )
    return contract


async def change_contract_status(
    session: AsyncSession,
    contract: ServiceContract,
    *,
    new_status: str,
    actor_id: str | None,
    today: date | None = None,
    reason: str | None = None,
) -> ServiceContract:
    today = today or date.today()
    ensure_allowed(validate_contract_transition(contract, new_status))

    previous_status = contract.status
    contract.status = new_status
    if new_status == ContractStatus.CANCELLED.value:
        contract.cancellation_date = today
        contract.next_payment_date = None
    elif new_status == ContractStatus.ACTIVE.value and contract.next_payment_date is None:
        contract.next_payment_date = next_payment_date(contract.payment_day, today)
    if reason:
        contract.notes = f"{contract.notes}\n{reason}" if contract.notes else reason
    await commit_or_conflict(session, entity="contract")
    logger.info(
        "contract_status_changed service_number=%s from=%s to=%s actor=%s",
        contract.service_number,
        previous_status,
        new_status,
        actor_id,
    )
    return contract


def contract_billing_status(contract: ServiceContract, today: date | None = None) -> dict[str, Any]:
    """Days left until the next due date, with the urgency shown at the counter."""
    days = None
    if contract.next_payment_date is not None:
        days = days_until(contract.next_payment_date, today)
    urgency = None
    if contract.status == ContractStatus.ACTIVE.value and days is not None:
        result = compute_payment_urgency(days)
        urgency = {"tier": result.tier.value, "message": result.message}
    return {
        "contract_id": contract.id,
        "service_number": contract.service_number,
        "status": contract.status,
        "payment_day": contract.payment_day,
        "monthly_fee": contract.monthly_fee,
        "next_payment_date": contract.next_payment_date,
        "days_until_due": days,
        "urgency": urgency,
    }


async def record_payment(
    session: AsyncSession,
    *,
    contract: ServiceContract,
    amount: Decimal,
    payment_method: str,
    payment_type: str,
    actor_id: str | None,
    period_month: int | None = None,
    period_year: int | None = None,
    receipt_url: str | None = None,
    notes: str | None = None,
) -> Payment:
    if contract.status == ContractStatus.CANCELLED.value:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "PRECONDITION_FAILED",
                "message": "Payments cannot be recorded for a cancelled contract",
                "field": "contract_id",
                "reason": "precondition-failed",
            },
        )
    payment = Payment(
        contract_id=contract.id,
        amount=amount,
        payment_method=payment_method,
        payment_type=payment_type,
        period_month=period_month,
        period_year=period_year,
        status=PaymentStatus.PENDING.value,
        receipt_url=receipt_url,
        notes=notes,
    )
    session.add(payment)
    await session.commit()
    logger.info(
        "payment_recorded contract=%s amount=%s method=%s actor=%s",
        contract.service_number,
        amount,
        payment_method,
        actor_id,
    )
    return payment


async def approve_payment(
    session: AsyncSession,
    payment: Payment,
    *,
    actor_id: str | None,
    today: date | None = None,
) -> tuple[Payment, ServiceContract]:
    contract = await get_contract_or_404(session, payment.contract_id, for_update=True)
    result = ensure_allowed(validate_payment_approval(payment, contract, today))

    payment.status = PaymentStatus.APPROVED.value
    payment.paid_at = _utc_now()
    payment.processed_by = actor_id
    if contract.status == ContractStatus.ACTIVE.value:
        contract.next_payment_date = result.next_payment_date
    await commit_or_conflict(session, entity="payment")
    logger.info(
        "payment_approved payment=%s contract=%s next_payment_date=%s actor=%s",
        payment.id,
        contract.service_number,
        contract.next_payment_date,
        actor_id,
    )
    return payment, contract


async def resolve_payment(
    session: AsyncSession,
    payment: Payment,
    *,
    new_status: str,
    actor_id: str | None,
    reason: str | None = None,
) -> Payment:
    # Rejection and cancellation leave the contract's billing untouched.
    ensure_allowed(validate_payment_resolution(payment, new_status))
    payment.status = new_status
    payment.processed_by = actor_id
    if reason:
        payment.notes = f"{payment.notes}\n{reason}" if payment.notes else reason
    await commit_or_conflict(session, entity="payment")
    logger.info("payment_resolved payment=%s status=%s actor=%s", payment.id, new_status, actor_id)
    return payment


async def reject_payment(
    session: AsyncSession, payment: Payment, *, actor_id: str | None, reason: str | None = None
) -> Payment:
    return await resolve_payment(
        session, payment, new_status=PaymentStatus.REJECTED.value, actor_id=actor_id, reason=reason
    )


async def cancel_payment(
    session: AsyncSession, payment: Payment, *, actor_id: str | None, reason: str | None = None
) -> Payment:
    return await resolve_payment(
        session, payment, new_status=PaymentStatus.CANCELLED.value, actor_id=actor_id, reason=reason
    )
