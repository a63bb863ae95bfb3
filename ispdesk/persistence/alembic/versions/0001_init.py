"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 10:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _now() -> sa.sql.elements.TextClause:
    return sa.text("now()")


def upgrade() -> None:
    op.create_table(
        "staff_users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=True, unique=True),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )

    op.create_table(
        "api_keys",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("staff_users.id"), nullable=False),
        sa.Column("key_prefix", sa.String(), nullable=False),
        sa.Column("key_hash", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)

    op.create_table(
        "service_packages",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("speed_mbps", sa.Integer(), nullable=True),
        sa.Column("channels_count", sa.Integer(), nullable=True),
        sa.Column("monthly_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("installation_fee", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("features", postgresql.JSONB(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )

    op.create_table(
        "postal_codes",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("code", sa.String(5), nullable=False),
        sa.Column("municipality", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=False, server_default="Chiapas"),
        sa.Column("coverage_status", sa.String(), nullable=False, server_default="not_available"),
        sa.Column("available_packages", postgresql.JSONB(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_postal_codes_code", "postal_codes", ["code"], unique=True)

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("folio", sa.String(), nullable=False, unique=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=False),
        sa.Column("phone_last4", sa.String(4), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("postal_code", sa.String(5), nullable=True),
        sa.Column("community", sa.String(), nullable=True),
        sa.Column("municipality", sa.String(), nullable=True),
        sa.Column("references_text", sa.Text(), nullable=True),
        sa.Column("package_id", sa.String(), sa.ForeignKey("service_packages.id"), nullable=True),
        sa.Column("preferred_schedule", sa.String(), nullable=True),
        sa.Column("service_number", sa.String(), nullable=True),
        sa.Column("fault_description", sa.Text(), nullable=True),
        sa.Column("contract_status", sa.String(), nullable=True),
        sa.Column("fault_status", sa.String(), nullable=True),
        sa.Column("priority", sa.String(), nullable=False, server_default="normal"),
        sa.Column("assigned_to", sa.String(), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("scheduled_time_start", sa.String(), nullable=True),
        sa.Column("scheduled_time_end", sa.String(), nullable=True),
        sa.Column("public_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
        # Exactly the status column matching the ticket type is populated.
        sa.CheckConstraint(
            "(type = 'contract' AND contract_status IS NOT NULL AND fault_status IS NULL)"
            " OR (type = 'fault' AND fault_status IS NOT NULL AND contract_status IS NULL)",
            name="ck_tickets_status_matches_type",
        ),
    )
    op.create_index("ix_tickets_folio_phone_last4", "tickets", ["folio", "phone_last4"])
    op.create_index("ix_tickets_type_created_at", "tickets", ["type", "created_at"])

    op.create_table(
        "ticket_status_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ticket_id", sa.String(), sa.ForeignKey("tickets.id"), nullable=False),
        sa.Column("previous_status", sa.String(), nullable=True),
        sa.Column("new_status", sa.String(), nullable=False),
        sa.Column("change_reason", sa.Text(), nullable=True),
        sa.Column("changed_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_ticket_status_history_ticket_id", "ticket_status_history", ["ticket_id"])

    op.create_table(
        "ticket_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ticket_id", sa.String(), sa.ForeignKey("tickets.id"), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("is_visible_to_customer", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_ticket_events_ticket_id", "ticket_events", ["ticket_id"])

    op.create_table(
        "customers",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=False),
        sa.Column("alternate_phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("location", sa.String(), nullable=False),
        sa.Column("neighborhood", sa.String(), nullable=True),
        sa.Column("references_text", sa.Text(), nullable=True),
        sa.Column("rfc", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
    )

    op.create_table(
        "service_contracts",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("service_number", sa.String(), nullable=False, unique=True),
        sa.Column("customer_id", sa.String(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("package_id", sa.String(), sa.ForeignKey("service_packages.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending_installation"),
        sa.Column("monthly_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("installation_fee", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("payment_day", sa.Integer(), nullable=False),
        sa.Column("next_payment_date", sa.Date(), nullable=True),
        sa.Column("installed_modem", sa.String(), nullable=True),
        sa.Column("installed_decoder", sa.String(), nullable=True),
        sa.Column("installation_date", sa.Date(), nullable=True),
        sa.Column("cancellation_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.CheckConstraint("payment_day BETWEEN 1 AND 31", name="ck_service_contracts_payment_day"),
    )
    op.create_index("ix_service_contracts_customer_id", "service_contracts", ["customer_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("contract_id", sa.String(), sa.ForeignKey("service_contracts.id"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_method", sa.String(), nullable=False),
        sa.Column("payment_type", sa.String(), nullable=False),
        sa.Column("period_month", sa.Integer(), nullable=True),
        sa.Column("period_year", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("receipt_url", sa.String(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_payments_contract_id", "payments", ["contract_id"])

    op.create_table(
        "work_orders",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("contract_id", sa.String(), sa.ForeignKey("service_contracts.id"), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(), nullable=False, server_default="normal"),
        sa.Column("assigned_to", sa.String(), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.CheckConstraint(
            "(status = 'completed') = (completed_date IS NOT NULL)",
            name="ck_work_orders_completed_date",
        ),
    )
    op.create_index("ix_work_orders_contract_id", "work_orders", ["contract_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("table_name", sa.String(), nullable=False),
        sa.Column("record_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("old_data", postgresql.JSONB(), nullable=True),
        sa.Column("new_data", postgresql.JSONB(), nullable=True),
        sa.Column("performed_by", sa.String(), nullable=True),
        sa.Column("performed_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_audit_logs_table_name", "audit_logs", ["table_name"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_performed_at", "audit_logs", ["performed_at"])
    op.create_index("ix_audit_logs_table_record", "audit_logs", ["table_name", "record_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_table_record", table_name="audit_logs")
    op.drop_index("ix_audit_logs_performed_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_table_name", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_work_orders_contract_id", table_name="work_orders")
    op.drop_table("work_orders")
    op.drop_index("ix_payments_contract_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_service_contracts_customer_id", table_name="service_contracts")
    op.drop_table("service_contracts")
    op.drop_table("customers")
    op.drop_index("ix_ticket_events_ticket_id", table_name="ticket_events")
    op.drop_table("ticket_events")
    op.drop_index("ix_ticket_status_history_ticket_id", table_name="ticket_status_history")
    op.drop_table("ticket_status_history")
    op.drop_index("ix_tickets_type_created_at", table_name="tickets")
    op.drop_index("ix_tickets_folio_phone_last4", table_name="tickets")
    op.drop_table("tickets")
    op.drop_index("ix_postal_codes_code", table_name="postal_codes")
    op.drop_table("postal_codes")
    op.drop_table("service_packages")
    op.drop_index("ix_api_keys_key_hash", table_name="api_keys")
    op.drop_index("ix_api_keys_user_id", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_table("staff_users")
