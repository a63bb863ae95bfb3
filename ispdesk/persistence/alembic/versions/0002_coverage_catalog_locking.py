"""municipalities, communities and optimistic locking

Revision ID: 0002_coverage_catalog_locking
Revises: 0001_init
Create Date: 2026-10-18 16:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_coverage_catalog_locking"
down_revision = "0001_init"
branch_labels = None
depends_on = None

_VERSIONED_TABLES = ("tickets", "service_contracts", "payments", "work_orders")


def _now() -> sa.sql.elements.TextClause:
    return sa.text("now()")


def upgrade() -> None:
    # Status writers compare version_id so concurrent changes cannot both land.
    for table_name in _VERSIONED_TABLES:
        op.add_column(
            table_name,
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        )

    op.create_table(
        "municipalities",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=False, server_default="Chiapas"),
        sa.Column("coverage_status", sa.String(), nullable=False, server_default="not_available"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.UniqueConstraint("name", "state", name="uq_municipalities_name_state"),
    )

    # Move the free-text municipality on postal codes into the new table.
    op.execute(
        """
        INSERT INTO municipalities (id, name, state, coverage_status)
        SELECT replace(gen_random_uuid()::text, '-', ''), municipality, state, 'not_available'
        FROM (SELECT DISTINCT municipality, state FROM postal_codes) AS listed
        """
    )
    op.add_column("postal_codes", sa.Column("municipality_id", sa.String(), nullable=True))
    op.execute(
        """
        UPDATE postal_codes AS pc
        SET municipality_id = m.id
        FROM municipalities AS m
        WHERE m.name = pc.municipality AND m.state = pc.state
        """
    )
    op.alter_column("postal_codes", "municipality_id", nullable=False)
    op.create_foreign_key(
        "fk_postal_codes_municipality_id",
        "postal_codes",
        "municipalities",
        ["municipality_id"],
        ["id"],
    )
    op.create_index("ix_postal_codes_municipality_id", "postal_codes", ["municipality_id"])
    op.drop_column("postal_codes", "municipality")
    op.drop_column("postal_codes", "state")

    op.create_table(
        "communities",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("postal_code_id", sa.String(), sa.ForeignKey("postal_codes.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("coverage_status", sa.String(), nullable=False, server_default="not_available"),
        sa.Column("estimated_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.UniqueConstraint("postal_code_id", "name", name="uq_communities_postal_code_name"),
    )
    op.create_index("ix_communities_postal_code_id", "communities", ["postal_code_id"])


def downgrade() -> None:
    op.drop_index("ix_communities_postal_code_id", table_name="communities")
    op.drop_table("communities")

    op.add_column("postal_codes", sa.Column("municipality", sa.String(), nullable=True))
    op.add_column(
        "postal_codes",
        sa.Column("state", sa.String(), nullable=False, server_default="Chiapas"),
    )
    op.execute(
        """
        UPDATE postal_codes AS pc
        SET municipality = m.name, state = m.state
        FROM municipalities AS m
        WHERE m.id = pc.municipality_id
        """
    )
    op.alter_column("postal_codes", "municipality", nullable=False)
    op.drop_index("ix_postal_codes_municipality_id", table_name="postal_codes")
    op.drop_constraint("fk_postal_codes_municipality_id", "postal_codes", type_="foreignkey")
    op.drop_column("postal_codes", "municipality_id")
    op.drop_table("municipalities")

    for table_name in reversed(_VERSIONED_TABLES):
        op.drop_column(table_name, "version_id")
