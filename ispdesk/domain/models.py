from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    # Models with __audited__ = True get INSERT/UPDATE/DELETE rows in audit_logs.
    __audited__ = False


class StaffUser(Base):
    __tablename__ = "staff_users"
    __audited__ = True

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    email: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    full_name: Mapped[str] = mapped_column(String)
    # One of tech|counter|admin|master.
    role: Mapped[str] = mapped_column(String)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class ApiKey(Base):
    __tablename__ = "api_keys"
    __audited__ = True

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("staff_users.id"), index=True)
    # Short prefix for operator display; the secret itself is never stored.
    key_prefix: Mapped[str] = mapped_column(String)
    key_hash: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class ServicePackage(Base):
    __tablename__ = "service_packages"
    __audited__ = True

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String)
    # internet|tv|combo
    type: Mapped[str] = mapped_column(String)
    speed_mbps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    channels_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    monthly_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    installation_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    features: Mapped[list[str] | None] = mapped_column(JsonType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class Municipality(Base):
    __tablename__ = "municipalities"
    __audited__ = True
    __table_args__ = (
        UniqueConstraint("name", "state", name="uq_municipalities_name_state"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String)
    state: Mapped[str] = mapped_column(String, default="Chiapas")
    # available|partial|coming_soon|not_available
    coverage_status: Mapped[str] = mapped_column(String, default="not_available")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class PostalCode(Base):
    __tablename__ = "postal_codes"
    __audited__ = True

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    code: Mapped[str] = mapped_column(String(5), unique=True, index=True)
    municipality_id: Mapped[str] = mapped_column(
        String, ForeignKey("municipalities.id"), index=True
    )
    # available|partial|coming_soon|not_available
    coverage_status: Mapped[str] = mapped_column(String, default="not_available")
    # Package ids sold here; empty means every active package.
    available_packages: Mapped[list[str] | None] = mapped_column(JsonType, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Community(Base):
    __tablename__ = "communities"
    __audited__ = True
    __table_args__ = (
        UniqueConstraint("postal_code_id", "name", name="uq_communities_postal_code_name"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    postal_code_id: Mapped[str] = mapped_column(
        String, ForeignKey("postal_codes.id"), index=True
    )
    name: Mapped[str] = mapped_column(String)
    coverage_status: Mapped[str] = mapped_column(String, default="not_available")
    # Expected go-live for coming_soon communities.
    estimated_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class Ticket(Base):
    __tablename__ = "tickets"
    __audited__ = True
    __table_args__ = (
        # Exactly the status column matching the ticket type is populated.
        CheckConstraint(
            "(type = 'contract' AND contract_status IS NOT NULL AND fault_status IS NULL)"
            " OR (type = 'fault' AND fault_status IS NOT NULL AND contract_status IS NULL)",
            name="ck_tickets_status_matches_type",
        ),
        Index("ix_tickets_folio_phone_last4", "folio", "phone_last4"),
        Index("ix_tickets_type_created_at", "type", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    folio: Mapped[str] = mapped_column(String, unique=True)
    type: Mapped[str] = mapped_column(String)
    full_name: Mapped[str] = mapped_column(String)
    phone: Mapped[str] = mapped_column(String)
    phone_last4: Mapped[str] = mapped_column(String(4))
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    address: Mapped[str] = mapped_column(Text)
    postal_code: Mapped[str | None] = mapped_column(String(5), nullable=True)
    community: Mapped[str | None] = mapped_column(String, nullable=True)
    municipality: Mapped[str | None] = mapped_column(String, nullable=True)
    references_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    package_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("service_packages.id"), nullable=True
    )
    preferred_schedule: Mapped[str | None] = mapped_column(String, nullable=True)
    service_number: Mapped[str | None] = mapped_column(String, nullable=True)
    fault_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    contract_status: Mapped[str | None] = mapped_column(String, nullable=True)
    fault_status: Mapped[str | None] = mapped_column(String, nullable=True)
    priority: Mapped[str] = mapped_column(String, default="normal")
    assigned_to: Mapped[str | None] = mapped_column(
        String, ForeignKey("staff_users.id"), nullable=True
    )
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    scheduled_time_start: Mapped[str | None] = mapped_column(String, nullable=True)
    scheduled_time_end: Mapped[str | None] = mapped_column(String, nullable=True)
    public_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Optimistic lock: stale writers fail instead of overwriting a newer status.
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    @property
    def current_status(self) -> str:
        return self.contract_status if self.type == "contract" else self.fault_status


class TicketStatusHistory(Base):
    __tablename__ = "ticket_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[str] = mapped_column(String, ForeignKey("tickets.id"), index=True)
    previous_status: Mapped[str | None] = mapped_column(String, nullable=True)
    new_status: Mapped[str] = mapped_column(String)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class TicketEvent(Base):
    __tablename__ = "ticket_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[str] = mapped_column(String, ForeignKey("tickets.id"), index=True)
    # note_internal|note_public|status_change|assigned|scheduled
    event_type: Mapped[str] = mapped_column(String)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_visible_to_customer: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class Customer(Base):
    __tablename__ = "customers"
    __audited__ = True

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    full_name: Mapped[str] = mapped_column(String)
    phone: Mapped[str] = mapped_column(String)
    alternate_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    address: Mapped[str] = mapped_column(Text)
    location: Mapped[str] = mapped_column(String)
    neighborhood: Mapped[str | None] = mapped_column(String, nullable=True)
    references_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    rfc: Mapped[str | None] = mapped_column(String, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class ServiceContract(Base):
    __tablename__ = "service_contracts"
    __audited__ = True
    __table_args__ = (
        CheckConstraint("payment_day BETWEEN 1 AND 31", name="ck_service_contracts_payment_day"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    service_number: Mapped[str] = mapped_column(String, unique=True)
    customer_id: Mapped[str] = mapped_column(String, ForeignKey("customers.id"), index=True)
    package_id: Mapped[str] = mapped_column(String, ForeignKey("service_packages.id"))
    status: Mapped[str] = mapped_column(String, default="pending_installation")
    monthly_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    installation_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    payment_day: Mapped[int] = mapped_column(Integer)
    # Only meaningful while status is active.
    next_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    installed_modem: Mapped[str | None] = mapped_column(String, nullable=True)
    installed_decoder: Mapped[str | None] = mapped_column(String, nullable=True)
    installation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cancellation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class Payment(Base):
    __tablename__ = "payments"
    __audited__ = True

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    contract_id: Mapped[str] = mapped_column(
        String, ForeignKey("service_contracts.id"), index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    payment_method: Mapped[str] = mapped_column(String)
    payment_type: Mapped[str] = mapped_column(String)
    period_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    period_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending")
    receipt_url: Mapped[str | None] = mapped_column(String, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class WorkOrder(Base):
    __tablename__ = "work_orders"
    __audited__ = True
    __table_args__ = (
        CheckConstraint(
            "(status = 'completed') = (completed_date IS NOT NULL)",
            name="ck_work_orders_completed_date",
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    contract_id: Mapped[str] = mapped_column(
        String, ForeignKey("service_contracts.id"), index=True
    )
    type: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="pending")
    priority: Mapped[str] = mapped_column(String, default="normal")
    assigned_to: Mapped[str | None] = mapped_column(
        String, ForeignKey("staff_users.id"), nullable=True
    )
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_table_record", "table_name", "record_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String, index=True)
    record_id: Mapped[str] = mapped_column(String)
    # INSERT|UPDATE|DELETE
    action: Mapped[str] = mapped_column(String, index=True)
    old_data: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    new_data: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    performed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, index=True
    )
