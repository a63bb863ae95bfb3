"""State model for tickets, contracts, payments and work orders.

Every validator here is pure: it inspects snapshots and a proposed change and
returns a :class:`LifecycleResult`. Persisting the change (and translating a
rejection into an HTTP error) is left to the service layer.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Protocol, Union


REASON_INVALID_TRANSITION = "invalid-transition"
REASON_PRECONDITION_FAILED = "precondition-failed"
REASON_UNKNOWN_STATUS = "unknown-status"


class TicketType(str, Enum):
    CONTRACT = "contract"
    FAULT = "fault"


class ContractTicketStatus(str, Enum):
    NEW = "NEW"
    VALIDATION = "VALIDATION"
    CONTACTED = "CONTACTED"
    SCHEDULED = "SCHEDULED"
    INSTALLED = "INSTALLED"
    CANCELLED = "CANCELLED"


class FaultTicketStatus(str, Enum):
    NEW = "NEW"
    DIAGNOSIS = "DIAGNOSIS"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ContractStatus(str, Enum):
    PENDING_INSTALLATION = "pending_installation"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    MERCADOPAGO = "mercadopago"


class PaymentType(str, Enum):
    MONTHLY = "monthly"
    INSTALLATION = "installation"
    RECONNECTION = "reconnection"
    OTHER = "other"


class WorkOrderStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WorkOrderType(str, Enum):
    INSTALLATION = "installation"
    MAINTENANCE = "maintenance"
    REPAIR = "repair"
    RECONNECTION = "reconnection"
    DISCONNECTION = "disconnection"


class AuditAction(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class UrgencyTier(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    OVERDUE = "overdue"


CONTRACT_TICKET_PROGRESSION: tuple[ContractTicketStatus, ...] = (
    ContractTicketStatus.NEW,
    ContractTicketStatus.VALIDATION,
    ContractTicketStatus.CONTACTED,
    ContractTicketStatus.SCHEDULED,
    ContractTicketStatus.INSTALLED,
)

FAULT_TICKET_PROGRESSION: tuple[FaultTicketStatus, ...] = (
    FaultTicketStatus.NEW,
    FaultTicketStatus.DIAGNOSIS,
    FaultTicketStatus.SCHEDULED,
    FaultTicketStatus.IN_PROGRESS,
    FaultTicketStatus.RESOLVED,
)

WORK_ORDER_PROGRESSION: tuple[WorkOrderStatus, ...] = (
    WorkOrderStatus.PENDING,
    WorkOrderStatus.ASSIGNED,
    WorkOrderStatus.IN_PROGRESS,
    WorkOrderStatus.COMPLETED,
)

# Activation is not listed: it has its own precondition check.
CONTRACT_TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    ContractStatus.PENDING_INSTALLATION: frozenset({ContractStatus.CANCELLED}),
    ContractStatus.ACTIVE: frozenset({ContractStatus.SUSPENDED, ContractStatus.CANCELLED}),
    ContractStatus.SUSPENDED: frozenset({ContractStatus.ACTIVE, ContractStatus.CANCELLED}),
    ContractStatus.CANCELLED: frozenset(),
}

WARNING_THRESHOLD_DAYS = 5


@dataclass(frozen=True)
class ContractTicket:
    # Contract-request tickets only ever carry a contract status.
    folio: str
    status: ContractTicketStatus
    type: TicketType = field(default=TicketType.CONTRACT, init=False)

    @property
    def status_field(self) -> str:
        return "contract_status"


@dataclass(frozen=True)
class FaultTicket:
    # Fault-report tickets only ever carry a fault status.
    folio: str
    status: FaultTicketStatus
    type: TicketType = field(default=TicketType.FAULT, init=False)

    @property
    def status_field(self) -> str:
        return "fault_status"


TicketSnapshot = Union[ContractTicket, FaultTicket]


@dataclass(frozen=True)
class LifecycleResult:
    ok: bool
    reason: str | None = None
    message: str | None = None
    field: str | None = None
    next_payment_date: date | None = None


@dataclass(frozen=True)
class PaymentUrgency:
    tier: UrgencyTier
    message: str


class ContractLike(Protocol):
    id: str
    status: str
    payment_day: int


class PaymentLike(Protocol):
    contract_id: str
    status: str


class WorkOrderLike(Protocol):
    contract_id: str
    type: str
    status: str


def _accept(*, next_payment_date: date | None = None) -> LifecycleResult:
    return LifecycleResult(ok=True, next_payment_date=next_payment_date)


def _reject(reason: str, message: str, field_name: str | None = None) -> LifecycleResult:
    return LifecycleResult(ok=False, reason=reason, message=message, field=field_name)


def _parse(enum_type: type[Enum], value: object) -> Enum | None:
    # Unknown values are reported separately from disallowed edges.
    try:
        return enum_type(value)
    except ValueError:
        return None


def _progression_successors(progression: tuple, cancelled: Enum, current: Enum) -> frozenset:
    if current == cancelled or current == progression[-1]:
        return frozenset()
    index = progression.index(current)
    return frozenset({progression[index + 1], cancelled})


def ticket_snapshot(
    *,
    folio: str,
    ticket_type: str,
    contract_status: str | None,
    fault_status: str | None,
) -> TicketSnapshot:
    """Build the tagged ticket state from the two stored status columns.

    Raises ``ValueError`` when the row carries both statuses, neither, the one
    that does not match its type, or a value outside the type's enum.
    """
    parsed_type = TicketType(ticket_type)
    if parsed_type is TicketType.CONTRACT:
        if contract_status is None or fault_status is not None:
            raise ValueError(f"Contract ticket {folio} must carry only contract_status")
        return ContractTicket(folio=folio, status=ContractTicketStatus(contract_status))
    if fault_status is None or contract_status is not None:
        raise ValueError(f"Fault ticket {folio} must carry only fault_status")
    return FaultTicket(folio=folio, status=FaultTicketStatus(fault_status))


def ticket_progression(ticket_type: TicketType) -> tuple:
    if ticket_type is TicketType.CONTRACT:
        return CONTRACT_TICKET_PROGRESSION
    return FAULT_TICKET_PROGRESSION


def is_terminal_ticket_status(ticket: TicketSnapshot) -> bool:
    return not allowed_ticket_transitions(ticket)


def allowed_ticket_transitions(ticket: TicketSnapshot) -> frozenset:
    if isinstance(ticket, ContractTicket):
        return _progression_successors(
            CONTRACT_TICKET_PROGRESSION, ContractTicketStatus.CANCELLED, ticket.status
        )
    return _progression_successors(FAULT_TICKET_PROGRESSION, FaultTicketStatus.CANCELLED, ticket.status)


def validate_ticket_transition(ticket: TicketSnapshot, new_status: str) -> LifecycleResult:
    """Admit the next step of the ticket's progression, or cancellation."""
    enum_type = ContractTicketStatus if isinstance(ticket, ContractTicket) else FaultTicketStatus
    target = _parse(enum_type, new_status)
    if target is None:
        return _reject(
            REASON_UNKNOWN_STATUS,
            f"Unknown {ticket.type.value} ticket status: {new_status}",
            ticket.status_field,
        )
    if target not in allowed_ticket_transitions(ticket):
        return _reject(
            REASON_INVALID_TRANSITION,
            f"Ticket {ticket.folio} cannot move from {ticket.status.value} to {target.value}",
            ticket.status_field,
        )
    return _accept()


def validate_work_order_transition(order: WorkOrderLike, new_status: str) -> LifecycleResult:
    current = _parse(WorkOrderStatus, order.status)
    if current is None:
        return _reject(REASON_UNKNOWN_STATUS, f"Unknown work order status: {order.status}", "status")
    target = _parse(WorkOrderStatus, new_status)
    if target is None:
        return _reject(REASON_UNKNOWN_STATUS, f"Unknown work order status: {new_status}", "status")
    allowed = _progression_successors(WORK_ORDER_PROGRESSION, WorkOrderStatus.CANCELLED, current)
    if target not in allowed:
        return _reject(
            REASON_INVALID_TRANSITION,
            f"Work order cannot move from {current.value} to {target.value}",
            "status",
        )
    return _accept()


def validate_contract_transition(contract: ContractLike, new_status: str) -> LifecycleResult:
    # Suspend, reactivate and cancel; activation goes through validate_contract_activation.
    current = _parse(ContractStatus, contract.status)
    if current is None:
        return _reject(REASON_UNKNOWN_STATUS, f"Unknown contract status: {contract.status}", "status")
    target = _parse(ContractStatus, new_status)
    if target is None:
        return _reject(REASON_UNKNOWN_STATUS, f"Unknown contract status: {new_status}", "status")
    if target not in CONTRACT_TRANSITIONS[current]:
        return _reject(
            REASON_INVALID_TRANSITION,
            f"Contract cannot move from {current.value} to {target.value}",
            "status",
        )
    return _accept()


def validate_contract_activation(
    contract: ContractLike, work_orders: Iterable[WorkOrderLike]
) -> LifecycleResult:
    current = _parse(ContractStatus, contract.status)
    if current is None:
        return _reject(REASON_UNKNOWN_STATUS, f"Unknown contract status: {contract.status}", "status")
    if current is not ContractStatus.PENDING_INSTALLATION:
        return _reject(
            REASON_PRECONDITION_FAILED,
            f"Only contracts pending installation can be activated (status is {current.value})",
            "status",
        )
    installed = any(
        order.contract_id == contract.id
        and order.type == WorkOrderType.INSTALLATION.value
        and order.status == WorkOrderStatus.COMPLETED.value
        for order in work_orders
    )
    if not installed:
        return _reject(
            REASON_PRECONDITION_FAILED,
            "Contract has no completed installation work order",
            "work_orders",
        )
    return _accept()


def validate_payment_approval(
    payment: PaymentLike, contract: ContractLike, today: date | None = None
) -> LifecycleResult:
    """Approve a pending payment and compute the contract's next due date.

    The date is always computed; callers only store it on active contracts.
    """
    current = _parse(PaymentStatus, payment.status)
    if current is None:
        return _reject(REASON_UNKNOWN_STATUS, f"Unknown payment status: {payment.status}", "status")
    if current is not PaymentStatus.PENDING:
        return _reject(
            REASON_PRECONDITION_FAILED,
            f"Only pending payments can be approved (status is {current.value})",
            "status",
        )
    if payment.contract_id != contract.id:
        return _reject(
            REASON_PRECONDITION_FAILED,
            "Payment does not belong to this contract",
            "contract_id",
        )
    if not 1 <= contract.payment_day <= 31:
        return _reject(
            REASON_PRECONDITION_FAILED,
            f"Contract payment_day must be between 1 and 31, got {contract.payment_day}",
            "payment_day",
        )
    return _accept(next_payment_date=next_payment_date(contract.payment_day, today))


def validate_payment_resolution(payment: PaymentLike, new_status: str) -> LifecycleResult:
    # Rejection and cancellation both close a pending payment without advancing billing.
    target = _parse(PaymentStatus, new_status)
    if target not in {PaymentStatus.REJECTED, PaymentStatus.CANCELLED}:
        return _reject(REASON_UNKNOWN_STATUS, f"Unsupported payment resolution: {new_status}", "status")
    current = _parse(PaymentStatus, payment.status)
    if current is None:
        return _reject(REASON_UNKNOWN_STATUS, f"Unknown payment status: {payment.status}", "status")
    if current is not PaymentStatus.PENDING:
        return _reject(
            REASON_INVALID_TRANSITION,
            f"Payment cannot move from {current.value} to {target.value}",
            "status",
        )
    return _accept()


def next_payment_date(payment_day: int, today: date | None = None) -> date:
    """Billing day of the month after ``today``, clamped to that month's length."""
    if not 1 <= payment_day <= 31:
        raise ValueError(f"payment_day must be between 1 and 31, got {payment_day}")
    anchor = today or date.today()
    year, month = anchor.year, anchor.month + 1
    if month > 12:
        year, month = year + 1, 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(payment_day, last_day))


def days_until(target: date, today: date | None = None) -> int:
    return (target - (today or date.today())).days


def compute_payment_urgency(days_until_due: int) -> PaymentUrgency:
    if days_until_due > WARNING_THRESHOLD_DAYS:
        return PaymentUrgency(tier=UrgencyTier.GOOD, message="Al corriente")
    if days_until_due > 0:
        return PaymentUrgency(tier=UrgencyTier.WARNING, message=f"{days_until_due} días para vencer")
    return PaymentUrgency(tier=UrgencyTier.OVERDUE, message=f"Vencido {abs(days_until_due)} días")
