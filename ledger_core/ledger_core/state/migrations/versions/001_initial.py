"""Create plans, teams, credit_consumption, and transactions.

Revision ID: 001
Revises:
Create Date: 2026-09-28 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JsonType = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "plans",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("monthly_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("credit_limit", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "teams",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("billing_email", sa.String(320), nullable=True),
        sa.Column("tax_id", sa.String(32), nullable=True),
        sa.Column("plan_id", sa.String(64), sa.ForeignKey("plans.id"), nullable=True),
        sa.Column("plan_limit_override", sa.Integer(), nullable=True),
        sa.Column("extra_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metering_agent_id", sa.String(128), nullable=True),
        sa.Column("gateway_customer_id", sa.String(128), nullable=True),
        sa.Column("subscription_id", sa.String(128), nullable=True),
        sa.Column("subscription_status", sa.String(32), nullable=True),
        sa.Column("next_due_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "subscription_status IS NULL OR subscription_status IN ('active', 'pending_payment', 'past_due')",
            name="ck_teams_subscription_status",
        ),
    )
    op.create_index("ix_teams_billing_email", "teams", ["billing_email"])
    op.create_index("ix_teams_gateway_customer", "teams", ["gateway_customer_id"])

    op.create_table(
        "credit_consumption",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("period", sa.String(7), nullable=False),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metadata_json", _JsonType, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "period", name="uq_consumption_tenant_period"),
    )
    op.create_index("ix_consumption_period", "credit_consumption", ["period"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(64), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("description", sa.String(512), nullable=False),
        sa.Column("invoice_url", sa.String(1024), nullable=True),
        sa.Column("gateway_payment_id", sa.String(128), nullable=True, unique=True),
        sa.Column("external_reference", sa.String(256), nullable=True),
        sa.Column("metadata_json", _JsonType, nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("kind IN ('credit_purchase', 'subscription')", name="ck_transactions_kind"),
        sa.CheckConstraint("status IN ('pending', 'paid', 'failed')", name="ck_transactions_status"),
    )
    op.create_index("ix_transactions_tenant_created", "transactions", ["tenant_id", "created_at"])
    op.create_index("ix_transactions_external_reference", "transactions", ["external_reference"])


def downgrade() -> None:
    op.drop_index("ix_transactions_external_reference", table_name="transactions")
    op.drop_index("ix_transactions_tenant_created", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_consumption_period", table_name="credit_consumption")
    op.drop_table("credit_consumption")
    op.drop_index("ix_teams_gateway_customer", table_name="teams")
    op.drop_index("ix_teams_billing_email", table_name="teams")
    op.drop_table("teams")
    op.drop_table("plans")
