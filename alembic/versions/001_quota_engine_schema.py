"""Create tenants, subscription history, the lifecycle ledger and resource tables."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001_quota_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


RESOURCE_TABLES = (
    "clients",
    "jobs",
    "invoices",
    "estimates",
    "technicians",
    "conversations",
    "partner_organizations",
    "suppliers",
    "materials",
    "appointments",
)


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("plan_tier", sa.String(32), nullable=False, server_default=sa.text("'free'")),
        sa.Column(
            "subscription_status",
            sa.String(32),
            nullable=False,
            server_default=sa.text("'none'"),
        ),
        sa.Column("subscription_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_subscription_id", sa.String(), nullable=True, unique=True),
        sa.Column("cancel_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_tenants_subscription_status", "tenants", ["subscription_status"])
    op.create_index("ix_tenants_subscription_ends_at", "tenants", ["subscription_ends_at"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("plan", sa.String(32), nullable=False, server_default=sa.text("'pro'")),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("external_subscription_id", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'EUR'")),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_subscriptions_tenant_id", "subscriptions", ["tenant_id"])
    op.create_index(
        "ix_subscriptions_external_subscription_id",
        "subscriptions",
        ["external_subscription_id"],
    )

    op.create_table(
        "lifecycle_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("previous_status", sa.String(32), nullable=False),
        sa.Column("new_status", sa.String(32), nullable=False),
        sa.Column("effective_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
    )
    op.create_index(
        "ix_lifecycle_events_tenant_effective",
        "lifecycle_events",
        ["tenant_id", "effective_at"],
    )

    for table in RESOURCE_TABLES:
        op.create_table(
            table,
            sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
            sa.Column("tenant_id", sa.Uuid(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )
        op.create_index(f"ix_{table}_tenant_id", table, ["tenant_id"])


def downgrade() -> None:
    for table in reversed(RESOURCE_TABLES):
        op.drop_index(f"ix_{table}_tenant_id", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_lifecycle_events_tenant_effective", table_name="lifecycle_events")
    op.drop_table("lifecycle_events")
    op.drop_index("ix_subscriptions_external_subscription_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_tenant_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_tenants_subscription_ends_at", table_name="tenants")
    op.drop_index("ix_tenants_subscription_status", table_name="tenants")
    op.drop_table("tenants")
