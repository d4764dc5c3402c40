"""Tests for ledger_api/ledger_api/services/balance_service.py"""

from __future__ import annotations

import pytest
from ledger_core.errors import MeteringNotConfiguredError, MeteringUnavailableError, TenantNotFoundError
from ledger_core.periods import current_period, period_key
from ledger_core.state.repository import ConsumptionRepository, TeamRepository
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_api.services.balance_service import CreditBalanceService


class TestComputeBalance:
    @pytest.mark.asyncio
    async def test_plan_limit_plus_extra_minus_used(self, seeded: AsyncSession, ledger_settings, make_metering) -> None:
        metering, _ = make_metering({"agent-a": 1300})
        snap = await CreditBalanceService(seeded, ledger_settings, metering).compute_balance("team-a", 2026, 3)
        assert snap.period == "2026-03"
        assert snap.plan_limit == 5000
        assert snap.total == 5200
        assert snap.credits_used == 1300
        assert snap.balance == 3900
        assert snap.stale is False

    @pytest.mark.asyncio
    async def test_overage_is_a_negative_balance(self, seeded: AsyncSession, ledger_settings, make_metering) -> None:
        metering, _ = make_metering({"agent-c": 1300})
        snap = await CreditBalanceService(seeded, ledger_settings, metering).compute_balance("team-c", 2026, 3)
        assert snap.plan_limit == ledger_settings.default_plan_limit == 1000
        assert snap.balance == -100

    @pytest.mark.asyncio
    async def test_records_consumption_with_provider_payload(
        self, seeded: AsyncSession, ledger_settings, make_metering
    ) -> None:
        metering, _ = make_metering({"agent-a": 42})
        await CreditBalanceService(seeded, ledger_settings, metering).compute_balance("team-a", 2026, 3)
        record = await ConsumptionRepository(seeded, "team-a").get("2026-03")
        assert record is not None
        assert record.credits_used == 42
        assert record.metadata_json["provider_payload"]["total"] == 42
        assert "last_synced_at" in record.metadata_json

    @pytest.mark.asyncio
    async def test_defaults_to_current_period(self, seeded: AsyncSession, ledger_settings, make_metering) -> None:
        metering, handler = make_metering({"agent-a": 0})
        snap = await CreditBalanceService(seeded, ledger_settings, metering).compute_balance("team-a")
        year, month = current_period(ledger_settings.tz)
        assert snap.period == period_key(year, month)
        assert handler.requests[0].url.params["month"] == str(month)

    @pytest.mark.asyncio
    async def test_plan_limit_override_of_zero_is_honoured(
        self, seeded: AsyncSession, ledger_settings, make_metering
    ) -> None:
        team = await TeamRepository(seeded).get("team-a")
        assert team is not None
        team.plan_limit_override = 0
        await seeded.flush()
        metering, _ = make_metering({"agent-a": 50})
        snap = await CreditBalanceService(seeded, ledger_settings, metering).compute_balance("team-a", 2026, 3)
        assert snap.plan_limit == 0
        assert snap.balance == 150


class TestDegradedMetering:
    @pytest.mark.asyncio
    async def test_uses_stored_consumption_when_provider_down(
        self, seeded: AsyncSession, ledger_settings, make_metering
    ) -> None:
        await ConsumptionRepository(seeded, "team-a").upsert_usage("2026-03", 900, {})
        metering, _ = make_metering({"agent-a": ("status", 503)})
        snap = await CreditBalanceService(seeded, ledger_settings, metering).compute_balance("team-a", 2026, 3)
        assert snap.stale is True
        assert snap.credits_used == 900
        assert snap.balance == 5200 - 900

    @pytest.mark.asyncio
    async def test_stale_without_record_reads_zero_and_writes_nothing(
        self, seeded: AsyncSession, ledger_settings, make_metering
    ) -> None:
        metering, _ = make_metering({"agent-a": ("status", 500)})
        snap = await CreditBalanceService(seeded, ledger_settings, metering).compute_balance("team-a", 2026, 3)
        assert snap.stale is True
        assert snap.credits_used == 0
        assert await ConsumptionRepository(seeded, "team-a").get("2026-03") is None

    @pytest.mark.asyncio
    async def test_strict_mode_propagates(self, seeded: AsyncSession, ledger_settings, make_metering) -> None:
        metering, _ = make_metering({"agent-a": ("status", 500)})
        service = CreditBalanceService(seeded, ledger_settings, metering)
        with pytest.raises(MeteringUnavailableError):
            await service.compute_balance("team-a", 2026, 3, allow_stale=False)


class TestBalanceErrors:
    @pytest.mark.asyncio
    async def test_unknown_team(self, seeded: AsyncSession, ledger_settings, make_metering) -> None:
        metering, _ = make_metering({})
        with pytest.raises(TenantNotFoundError):
            await CreditBalanceService(seeded, ledger_settings, metering).compute_balance("nope")

    @pytest.mark.asyncio
    async def test_team_without_agent(self, seeded: AsyncSession, ledger_settings, make_metering) -> None:
        metering, handler = make_metering({})
        with pytest.raises(MeteringNotConfiguredError):
            await CreditBalanceService(seeded, ledger_settings, metering).compute_balance("team-b")
        assert handler.requests == []
