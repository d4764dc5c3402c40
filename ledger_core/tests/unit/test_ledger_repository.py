"""Repository tests against in-memory SQLite.

Covers:
- Team compare-and-swap on extra_credits
- Consumption upsert idempotency and metadata read-merge
- Adjustment log append semantics
- Transaction pending/failed/paid transitions
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_core.state.repository import (
    ConsumptionRepository,
    TeamRepository,
    TransactionRepository,
    digits_only,
)
from ledger_core.state.tables import ConsumptionRecordTable

# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TestTeamRepository:
    @pytest.mark.asyncio
    async def test_cas_succeeds_on_expected_value(self, seeded: AsyncSession) -> None:
        teams = TeamRepository(seeded)
        assert await teams.compare_and_set_extra_credits("team-a", 200, 700)
        team = await teams.get("team-a")
        assert team is not None and team.extra_credits == 700

    @pytest.mark.asyncio
    async def test_cas_fails_on_stale_value(self, seeded: AsyncSession) -> None:
        teams = TeamRepository(seeded)
        assert not await teams.compare_and_set_extra_credits("team-a", 999, 0)
        team = await teams.get("team-a")
        assert team is not None and team.extra_credits == 200

    @pytest.mark.asyncio
    async def test_find_by_email_is_case_insensitive(self, seeded: AsyncSession) -> None:
        team = await TeamRepository(seeded).find_by_email("finance@beta.EXAMPLE")
        assert team is not None and team.id == "team-b"

    @pytest.mark.asyncio
    async def test_find_by_tax_id_ignores_punctuation(self, seeded: AsyncSession) -> None:
        team = await TeamRepository(seeded).find_by_tax_id("12345678000190")
        assert team is not None and team.id == "team-a"

    @pytest.mark.asyncio
    async def test_tax_id_digits_are_stored_on_create(self, seeded: AsyncSession) -> None:
        team = await TeamRepository(seeded).get("team-a")
        assert team is not None and team.tax_id_digits == "12345678000190"
        beta = await TeamRepository(seeded).get("team-b")
        assert beta is not None and beta.tax_id_digits is None

    @pytest.mark.asyncio
    async def test_find_by_formatted_tax_id(self, seeded: AsyncSession) -> None:
        team = await TeamRepository(seeded).find_by_tax_id("12.345.678/0001-90")
        assert team is not None and team.id == "team-a"

    @pytest.mark.asyncio
    async def test_find_by_empty_tax_id(self, seeded: AsyncSession) -> None:
        assert await TeamRepository(seeded).find_by_tax_id("--") is None

    @pytest.mark.asyncio
    async def test_set_subscription_keeps_plan_when_omitted(self, seeded: AsyncSession) -> None:
        teams = TeamRepository(seeded)
        await teams.set_subscription("team-a", subscription_id="sub_1", status="active")
        team = await teams.get("team-a")
        assert team is not None
        assert team.subscription_id == "sub_1"
        assert team.subscription_status == "active"
        assert team.plan_id == "pro"

    def test_digits_only(self) -> None:
        assert digits_only("123.456.789-09") == "12345678909"
        assert digits_only(None) == ""


# ---------------------------------------------------------------------------
# Consumption
# ---------------------------------------------------------------------------


async def _row_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(ConsumptionRecordTable))
    return int(result.scalar_one())


class TestConsumptionRepository:
    @pytest.mark.asyncio
    async def test_upsert_twice_keeps_one_row(self, seeded: AsyncSession) -> None:
        repo = ConsumptionRepository(seeded, "team-a")
        await repo.upsert_usage("2024-07", 100, {"provider_payload": {"total": 100}})
        row = await repo.upsert_usage("2024-07", 150, {"provider_payload": {"total": 150}})
        assert row.credits_used == 150
        assert await _row_count(seeded) == 1

    @pytest.mark.asyncio
    async def test_upsert_preserves_adjustments(self, seeded: AsyncSession) -> None:
        repo = ConsumptionRepository(seeded, "team-a")
        await repo.append_adjustment("2024-07", {"action": "add_credits", "amount": 10})
        row = await repo.upsert_usage("2024-07", 42, {"provider_payload": {"total": 42}, "adjustments": []})
        assert row.metadata_json["adjustments"] == [{"action": "add_credits", "amount": 10}]
        assert row.metadata_json["provider_payload"] == {"total": 42}

    @pytest.mark.asyncio
    async def test_append_creates_row_with_given_usage(self, seeded: AsyncSession) -> None:
        repo = ConsumptionRepository(seeded, "team-a")
        row = await repo.append_adjustment("2024-08", {"n": 1}, credits_used_if_new=900)
        assert row.credits_used == 900

    @pytest.mark.asyncio
    async def test_append_keeps_existing_usage_and_order(self, seeded: AsyncSession) -> None:
        repo = ConsumptionRepository(seeded, "team-a")
        await repo.upsert_usage("2024-08", 300, {})
        await repo.append_adjustment("2024-08", {"n": 1}, credits_used_if_new=9999)
        row = await repo.append_adjustment("2024-08", {"n": 2})
        assert row.credits_used == 300
        assert row.metadata_json["adjustments"] == [{"n": 1}, {"n": 2}]
        assert await _row_count(seeded) == 1

    @pytest.mark.asyncio
    async def test_reset_period_zeroes_and_merges(self, seeded: AsyncSession) -> None:
        repo = ConsumptionRepository(seeded, "team-a")
        await repo.append_adjustment("2024-09", {"n": 1}, credits_used_if_new=50)
        row = await repo.reset_period("2024-09", {"reset_type": "monthly_automatic"})
        assert row.credits_used == 0
        assert row.metadata_json["reset_type"] == "monthly_automatic"
        assert row.metadata_json["adjustments"] == [{"n": 1}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("write", ["upsert_usage", "reset_period"])
    async def test_write_merges_into_row_inserted_after_first_read(
        self, seeded: AsyncSession, monkeypatch: pytest.MonkeyPatch, write: str
    ) -> None:
        repo = ConsumptionRepository(seeded, "team-a")
        real_get = repo.get
        reads = {"n": 0}

        async def _get(period: str, *, for_update: bool = False):
            reads["n"] += 1
            if reads["n"] == 1:
                # A concurrent adjustment creates the row after this read saw nothing.
                await ConsumptionRepository(seeded, "team-a").append_adjustment(
                    "2024-10", {"action": "add_credits", "amount": 25}, credits_used_if_new=5
                )
                return None
            return await real_get(period, for_update=for_update)

        monkeypatch.setattr(repo, "get", _get)
        if write == "upsert_usage":
            row = await repo.upsert_usage("2024-10", 77, {"provider_payload": {"total": 77}})
            assert row.credits_used == 77
        else:
            row = await repo.reset_period("2024-10", {"reset_type": "monthly_automatic"})
            assert row.credits_used == 0

        assert row.metadata_json["adjustments"] == [{"action": "add_credits", "amount": 25}]
        assert await _row_count(seeded) == 1

    @pytest.mark.asyncio
    async def test_rows_are_tenant_scoped(self, seeded: AsyncSession) -> None:
        await ConsumptionRepository(seeded, "team-a").upsert_usage("2024-07", 10, {})
        assert await ConsumptionRepository(seeded, "team-b").get("2024-07") is None


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransactionRepository:
    @pytest.mark.asyncio
    async def test_reference_embeds_transaction_id(self, seeded: AsyncSession) -> None:
        repo = TransactionRepository(seeded, "team-a")
        txn = await repo.create_pending(
            kind="credit_purchase",
            amount=Decimal("40.00"),
            description="500 credits",
            external_reference_prefix="credits_",
        )
        assert txn.status == "pending"
        assert txn.external_reference == f"credits_{txn.id}"
        assert (await repo.get_by_external_reference(txn.external_reference)).id == txn.id  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_mark_failed_only_from_pending(self, seeded: AsyncSession) -> None:
        repo = TransactionRepository(seeded, "team-a")
        txn = await repo.create_pending(kind="credit_purchase", amount=Decimal("40.00"), description="x")
        assert await repo.mark_failed(txn.id, "gateway said no")
        assert not await repo.mark_failed(txn.id, "again")
        row = await repo.get(txn.id)
        assert row is not None
        assert row.status == "failed"
        assert row.failure_reason == "gateway said no"

    @pytest.mark.asyncio
    async def test_mark_paid_is_idempotent(self, seeded: AsyncSession) -> None:
        repo = TransactionRepository(seeded, "team-a")
        txn = await repo.create_pending(kind="subscription", amount=Decimal("199.90"), description="Pro")
        assert await repo.mark_paid(txn.id)
        assert not await repo.mark_paid(txn.id)

    @pytest.mark.asyncio
    async def test_attach_invoice(self, seeded: AsyncSession) -> None:
        repo = TransactionRepository(seeded, "team-a")
        txn = await repo.create_pending(kind="credit_purchase", amount=Decimal("80.00"), description="1000 credits")
        await repo.attach_invoice(txn.id, invoice_url="https://pay.example/i/1", gateway_payment_id="pay_1")
        row = await repo.get(txn.id)
        assert row is not None
        assert row.invoice_url == "https://pay.example/i/1"
        assert row.gateway_payment_id == "pay_1"

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_read(self, seeded: AsyncSession) -> None:
        txn = await TransactionRepository(seeded, "team-a").create_pending(
            kind="credit_purchase", amount=Decimal("40.00"), description="x"
        )
        assert await TransactionRepository(seeded, "team-b").get(txn.id) is None
