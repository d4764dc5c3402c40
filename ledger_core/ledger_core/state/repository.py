"""Repository classes providing access to the ledger state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_core.state.tables import (
    ConsumptionRecordTable,
    PlanTable,
    TeamTable,
    TransactionTable,
)

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")

ADJUSTMENTS_KEY = "adjustments"


def digits_only(value: str | None) -> str:
    """Strip everything but digits (tax ids arrive formatted or not)."""
    return _NON_DIGITS.sub("", value or "")


# ---------------------------------------------------------------------------
# Dialect helpers
# ---------------------------------------------------------------------------


def _dialect_name(session: AsyncSession) -> str:
    bind = session.get_bind()
    return str(getattr(getattr(bind, "dialect", None), "name", ""))


async def _dialect_insert_ignore(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> bool:
    """Insert with ``ON CONFLICT DO NOTHING``.

    Returns ``True`` when a row was inserted, ``False`` on conflict.
    """
    stmt: Any
    if "postgresql" in _dialect_name(session):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    result = await session.execute(stmt)
    return bool(result.rowcount)


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class PlanRepository:
    """Read and seed subscription plans."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, plan_id: str) -> PlanTable | None:
        return await self._session.get(PlanTable, plan_id)

    async def create(
        self,
        plan_id: str,
        name: str,
        monthly_price: Decimal,
        credit_limit: int | None = None,
    ) -> PlanTable:
        row = PlanTable(id=plan_id, name=name, monthly_price=monthly_price, credit_limit=credit_limit)
        self._session.add(row)
        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamRepository:
    """Team lookups and the guarded writes on billing columns.

    ``extra_credits`` is never assigned through the ORM object; use
    :meth:`compare_and_set_extra_credits` so that concurrent adjustments
    cannot overwrite each other.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, team_id: str) -> TeamTable | None:
        """Fetch a team, always reloading column values from the database."""
        stmt = select(TeamTable).where(TeamTable.id == team_id).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        team_id: str,
        name: str,
        *,
        billing_email: str | None = None,
        tax_id: str | None = None,
        plan_id: str | None = None,
        plan_limit_override: int | None = None,
        extra_credits: int = 0,
        metering_agent_id: str | None = None,
        gateway_customer_id: str | None = None,
    ) -> TeamTable:
        row = TeamTable(
            id=team_id,
            name=name,
            billing_email=billing_email,
            tax_id=tax_id,
            tax_id_digits=digits_only(tax_id) or None,
            plan_id=plan_id,
            plan_limit_override=plan_limit_override,
            extra_credits=extra_credits,
            metering_agent_id=metering_agent_id,
            gateway_customer_id=gateway_customer_id,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_ids(self) -> list[str]:
        result = await self._session.execute(select(TeamTable.id).order_by(TeamTable.id))
        return list(result.scalars().all())

    async def find_by_email(self, email: str) -> TeamTable | None:
        """Case-insensitive match on ``billing_email``; first match by id."""
        stmt = (
            select(TeamTable)
            .where(func.lower(TeamTable.billing_email) == email.strip().lower())
            .order_by(TeamTable.id)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_tax_id(self, tax_id: str) -> TeamTable | None:
        """Match on tax id comparing digits only; first match by id."""
        wanted = digits_only(tax_id)
        if not wanted:
            return None
        stmt = select(TeamTable).where(TeamTable.tax_id_digits == wanted).order_by(TeamTable.id).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def compare_and_set_extra_credits(self, team_id: str, expected: int, new: int) -> bool:
        """Write ``extra_credits = new`` only if it still equals *expected*.

        Returns ``True`` when the row was updated.
        """
        stmt = (
            update(TeamTable)
            .where(TeamTable.id == team_id, TeamTable.extra_credits == expected)
            .values(extra_credits=new, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount == 1

    async def set_gateway_customer_id(self, team_id: str, customer_id: str) -> None:
        stmt = (
            update(TeamTable)
            .where(TeamTable.id == team_id)
            .values(gateway_customer_id=customer_id, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def set_subscription(
        self,
        team_id: str,
        *,
        subscription_id: str,
        status: str,
        plan_id: str | None = None,
        next_due_date: date | None = None,
    ) -> None:
        """Record the team's gateway subscription.

        ``plan_id`` and ``next_due_date`` are left unchanged when ``None``.
        """
        values: dict[str, Any] = {
            "subscription_id": subscription_id,
            "subscription_status": status,
            "updated_at": datetime.now(UTC),
        }
        if plan_id is not None:
            values["plan_id"] = plan_id
        if next_due_date is not None:
            values["next_due_date"] = next_due_date
        stmt = (
            update(TeamTable)
            .where(TeamTable.id == team_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)
        await self._session.flush()


# ---------------------------------------------------------------------------
# Consumption
# ---------------------------------------------------------------------------


class ConsumptionRepository:
    """Per-period consumption rows for one tenant.

    Every write reads the current row under ``FOR UPDATE`` and merges into
    its metadata, so the ``adjustments`` list is only ever extended.
    """

    def __init__(self, session: AsyncSession, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def get(self, period: str, *, for_update: bool = False) -> ConsumptionRecordTable | None:
        stmt = (
            select(ConsumptionRecordTable)
            .where(
                ConsumptionRecordTable.tenant_id == self._tenant_id,
                ConsumptionRecordTable.period == period,
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_or_create(
        self,
        period: str,
        credits_used: int,
        metadata: dict[str, Any],
    ) -> tuple[ConsumptionRecordTable, bool]:
        """Return the period's row locked ``FOR UPDATE``, inserting it if missing.

        The second element is ``True`` when this call inserted the row with
        *credits_used* and *metadata*.  When another session inserts first,
        the insert is ignored and that session's row is locked and returned
        so the caller merges into it.
        """
        existing = await self.get(period, for_update=True)
        if existing is not None:
            return existing, False

        now = datetime.now(UTC)
        inserted = await _dialect_insert_ignore(
            self._session,
            ConsumptionRecordTable,
            values={
                "tenant_id": self._tenant_id,
                "period": period,
                "credits_used": credits_used,
                "metadata_json": metadata,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["tenant_id", "period"],
        )
        await self._session.flush()
        row = await self.get(period, for_update=True)
        assert row is not None  # noqa: S101
        return row, inserted

    async def upsert_usage(
        self,
        period: str,
        credits_used: int,
        metadata_patch: dict[str, Any],
    ) -> ConsumptionRecordTable:
        """Store *credits_used* and merge *metadata_patch* into the row.

        The adjustments list is carried over from the stored row even if
        the patch names the same key.
        """
        fresh = {k: v for k, v in metadata_patch.items() if k != ADJUSTMENTS_KEY}
        row, inserted = await self._lock_or_create(period, credits_used, fresh)
        if inserted:
            return row

        metadata = dict(row.metadata_json or {})
        adjustments = list(metadata.get(ADJUSTMENTS_KEY, []))
        metadata.update(fresh)
        if adjustments:
            metadata[ADJUSTMENTS_KEY] = adjustments
        row.credits_used = credits_used
        row.metadata_json = metadata
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def append_adjustment(
        self,
        period: str,
        entry: dict[str, Any],
        *,
        credits_used_if_new: int = 0,
    ) -> ConsumptionRecordTable:
        """Append *entry* to the period's adjustment log.

        An existing row keeps its ``credits_used``.  A missing row is
        created with *credits_used_if_new*.
        """
        row, inserted = await self._lock_or_create(period, credits_used_if_new, {ADJUSTMENTS_KEY: [entry]})
        if inserted:
            return row

        metadata = dict(row.metadata_json or {})
        metadata[ADJUSTMENTS_KEY] = [*metadata.get(ADJUSTMENTS_KEY, []), entry]
        row.metadata_json = metadata
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def reset_period(self, period: str, metadata_patch: dict[str, Any]) -> ConsumptionRecordTable:
        """Zero ``credits_used`` for *period*, preserving prior metadata."""
        return await self.upsert_usage(period, 0, metadata_patch)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TransactionRepository:
    """Purchase and subscription transactions for one tenant."""

    def __init__(self, session: AsyncSession, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def create_pending(
        self,
        *,
        kind: str,
        amount: Decimal,
        description: str,
        metadata: dict[str, Any] | None = None,
        external_reference_prefix: str | None = None,
        external_reference: str | None = None,
        invoice_url: str | None = None,
        gateway_payment_id: str | None = None,
    ) -> TransactionTable:
        """Insert a ``pending`` transaction.

        With *external_reference_prefix* the reference becomes
        ``<prefix><transaction id>``, which is unique by construction.
        """
        txn_id = uuid.uuid4().hex
        if external_reference_prefix is not None:
            external_reference = f"{external_reference_prefix}{txn_id}"
        row = TransactionTable(
            id=txn_id,
            tenant_id=self._tenant_id,
            kind=kind,
            amount=amount,
            status="pending",
            description=description,
            invoice_url=invoice_url,
            gateway_payment_id=gateway_payment_id,
            external_reference=external_reference,
            metadata_json=metadata or {},
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, txn_id: str) -> TransactionTable | None:
        stmt = (
            select(TransactionTable)
            .where(TransactionTable.id == txn_id, TransactionTable.tenant_id == self._tenant_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_reference(self, reference: str) -> TransactionTable | None:
        stmt = (
            select(TransactionTable)
            .where(
                TransactionTable.tenant_id == self._tenant_id,
                TransactionTable.external_reference == reference,
            )
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def list_recent(self, limit: int = 50) -> list[TransactionTable]:
        stmt = (
            select(TransactionTable)
            .where(TransactionTable.tenant_id == self._tenant_id)
            .order_by(TransactionTable.created_at.desc(), TransactionTable.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def attach_invoice(
        self,
        txn_id: str,
        *,
        invoice_url: str | None,
        gateway_payment_id: str,
    ) -> None:
        stmt = (
            update(TransactionTable)
            .where(TransactionTable.id == txn_id, TransactionTable.tenant_id == self._tenant_id)
            .values(invoice_url=invoice_url, gateway_payment_id=gateway_payment_id, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def _transition_from_pending(self, txn_id: str, status: str, **values: Any) -> bool:
        stmt = (
            update(TransactionTable)
            .where(
                TransactionTable.id == txn_id,
                TransactionTable.tenant_id == self._tenant_id,
                TransactionTable.status == "pending",
            )
            .values(status=status, updated_at=datetime.now(UTC), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount == 1

    async def mark_failed(self, txn_id: str, reason: str) -> bool:
        """Move a pending transaction to ``failed``.  No-op otherwise."""
        return await self._transition_from_pending(txn_id, "failed", failure_reason=reason)

    async def mark_paid(self, txn_id: str) -> bool:
        """Move a pending transaction to ``paid`` exactly once.

        Returns ``False`` when the row was already settled, which lets a
        payment-notification handler ignore duplicate deliveries.
        """
        return await self._transition_from_pending(txn_id, "paid")
