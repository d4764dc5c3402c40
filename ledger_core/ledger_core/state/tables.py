"""SQLAlchemy 2.0 ORM table definitions for the ledger state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and the
repository layer.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
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

# JSONB on PostgreSQL, plain JSON (stored as TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all ledger tables."""


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class PlanTable(Base):
    """Subscription plans and their default monthly credit allowance."""

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    monthly_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    credit_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamTable(Base):
    """A billed tenant.

    ``extra_credits`` is the purchased pool and carries over between
    periods.  It is only ever written through a compare-and-swap in
    :class:`~ledger_core.state.repository.TeamRepository`.
    """

    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    billing_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    tax_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    tax_id_digits: Mapped[str | None] = mapped_column(String(32), nullable=True)
    plan_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("plans.id"), nullable=True)
    plan_limit_override: Mapped[int | None] = mapped_column(Integer, nullable=True)
    extra_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metering_agent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    gateway_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    next_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "subscription_status IS NULL OR subscription_status IN ('active', 'pending_payment', 'past_due')",
            name="ck_teams_subscription_status",
        ),
        Index("ix_teams_billing_email", "billing_email"),
        Index("ix_teams_gateway_customer", "gateway_customer_id"),
        Index("ix_teams_tax_id_digits", "tax_id_digits"),
    )


# ---------------------------------------------------------------------------
# Consumption
# ---------------------------------------------------------------------------


class ConsumptionRecordTable(Base):
    """Per-team, per-period consumption.

    Exactly one row exists per ``(tenant_id, period)``.  ``metadata_json``
    holds the last provider payload and the ``adjustments`` audit list,
    which is only ever appended to.
    """

    __tablename__ = "credit_consumption"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), ForeignKey("teams.id"), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "period", name="uq_consumption_tenant_period"),
        Index("ix_consumption_period", "period"),
    )


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TransactionTable(Base):
    """One credit purchase or subscription payment attempt.

    Rows are created ``pending`` before the gateway is contacted.  The
    webhook finalizer moves them to ``paid``; the orchestrator moves them
    to ``failed`` when the gateway call fails.
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), ForeignKey("teams.id"), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    invoice_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    external_reference: Mapped[str | None] = mapped_column(String(256), nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False, default=dict)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("kind IN ('credit_purchase', 'subscription')", name="ck_transactions_kind"),
        CheckConstraint("status IN ('pending', 'paid', 'failed')", name="ck_transactions_status"),
        Index("ix_transactions_tenant_created", "tenant_id", "created_at"),
        Index("ix_transactions_external_reference", "external_reference"),
    )
