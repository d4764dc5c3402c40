"""Tests for ledger_api/ledger_api/services/monthly_reset.py

Covers:
- Day-of-month guard evaluated in the business timezone
- Fresh zeroed records for every team, extra credits untouched
- Per-team failure isolation
- Scheduler runs at most once per period
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest
from ledger_core.state.repository import ConsumptionRepository, TeamRepository
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_api.services.monthly_reset import MonthlyResetJob, MonthlyResetScheduler

# 09:00 in Sao Paulo on 1 March.
FIRST_OF_MARCH = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
SECOND_OF_MARCH = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
# Already 1 March in UTC, still 28 February in Sao Paulo.
LATE_FEBRUARY_LOCAL = datetime(2026, 3, 1, 2, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------


class TestMonthlyResetJob:
    @pytest.mark.asyncio
    async def test_skips_when_not_first_day(self, seeded: AsyncSession, session_factory, ledger_settings) -> None:
        report = await MonthlyResetJob(session_factory, ledger_settings).run(SECOND_OF_MARCH)
        assert report.skipped is True
        assert report.day == 2
        assert report.reset_count == 0
        assert await ConsumptionRepository(seeded, "team-a").get("2026-03") is None

    @pytest.mark.asyncio
    async def test_guard_uses_business_timezone(self, seeded: AsyncSession, session_factory, ledger_settings) -> None:
        report = await MonthlyResetJob(session_factory, ledger_settings).run(LATE_FEBRUARY_LOCAL)
        assert report.skipped is True
        assert report.period == "2026-02"
        assert report.day == 28

    @pytest.mark.asyncio
    async def test_resets_every_team(self, seeded: AsyncSession, session_factory, ledger_settings) -> None:
        await ConsumptionRepository(seeded, "team-a").upsert_usage("2026-02", 4100, {"provider_payload": {}})
        await seeded.commit()

        report = await MonthlyResetJob(session_factory, ledger_settings).run(FIRST_OF_MARCH)

        assert report.skipped is False
        assert report.period == "2026-03"
        assert report.total_teams == 3
        assert report.reset_count == 3
        assert report.failed == []
        for team_id in ("team-a", "team-b", "team-c"):
            record = await ConsumptionRepository(seeded, team_id).get("2026-03")
            assert record is not None
            assert record.credits_used == 0
            assert record.metadata_json["reset_type"] == "monthly_automatic"

        february = await ConsumptionRepository(seeded, "team-a").get("2026-02")
        assert february is not None and february.credits_used == 4100
        team = await TeamRepository(seeded).get("team-a")
        assert team is not None and team.extra_credits == 200

    @pytest.mark.asyncio
    async def test_rerun_keeps_adjustment_history(self, seeded: AsyncSession, session_factory, ledger_settings) -> None:
        consumption = ConsumptionRepository(seeded, "team-c")
        await consumption.append_adjustment("2026-03", {"action": "add_credits"}, credits_used_if_new=300)
        await seeded.commit()

        job = MonthlyResetJob(session_factory, ledger_settings)
        await job.run(FIRST_OF_MARCH)
        await job.run(FIRST_OF_MARCH)

        record = await consumption.get("2026-03")
        assert record is not None
        assert record.credits_used == 0
        assert record.metadata_json["adjustments"] == [{"action": "add_credits"}]

    @pytest.mark.asyncio
    async def test_one_failing_team_does_not_abort_the_batch(
        self, seeded: AsyncSession, session_factory, ledger_settings, monkeypatch
    ) -> None:
        original = ConsumptionRepository.reset_period

        async def _flaky(self, period, metadata_patch):
            if self._tenant_id == "team-b":
                raise RuntimeError("disk full")
            return await original(self, period, metadata_patch)

        monkeypatch.setattr(ConsumptionRepository, "reset_period", _flaky)
        report = await MonthlyResetJob(session_factory, ledger_settings).run(FIRST_OF_MARCH)

        assert report.failed == ["team-b"]
        assert report.reset_count == 2
        assert await ConsumptionRepository(seeded, "team-b").get("2026-03") is None
        assert await ConsumptionRepository(seeded, "team-c").get("2026-03") is not None

    @pytest.mark.asyncio
    async def test_clock_is_used_when_now_is_omitted(
        self, seeded: AsyncSession, session_factory, ledger_settings
    ) -> None:
        job = MonthlyResetJob(session_factory, ledger_settings, clock=lambda: SECOND_OF_MARCH)
        report = await job.run()
        assert report.period == "2026-03"
        assert report.skipped is True


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class TestMonthlyResetScheduler:
    @pytest.mark.asyncio
    async def test_runs_once_per_period(self, seeded: AsyncSession, session_factory, ledger_settings) -> None:
        scheduler = MonthlyResetScheduler(MonthlyResetJob(session_factory, ledger_settings))

        first = await scheduler.tick(FIRST_OF_MARCH)
        second = await scheduler.tick(FIRST_OF_MARCH)

        assert first is not None and first.reset_count == 3
        assert second is None
        assert scheduler.last_period == "2026-03"

    @pytest.mark.asyncio
    async def test_skipped_days_do_not_mark_the_period(
        self, seeded: AsyncSession, session_factory, ledger_settings
    ) -> None:
        scheduler = MonthlyResetScheduler(MonthlyResetJob(session_factory, ledger_settings))
        report = await scheduler.tick(SECOND_OF_MARCH)
        assert report is not None and report.skipped
        assert scheduler.last_period is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self, seeded: AsyncSession, session_factory, ledger_settings) -> None:
        job = MonthlyResetJob(session_factory, ledger_settings, clock=lambda: SECOND_OF_MARCH)
        scheduler = MonthlyResetScheduler(job, interval=3600)
        await scheduler.start()
        assert scheduler.running
        await scheduler.start()  # second start is ignored
        await asyncio.sleep(0)
        await scheduler.stop()
        assert not scheduler.running
