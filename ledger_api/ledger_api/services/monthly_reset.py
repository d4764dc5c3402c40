"""Monthly consumption reset and its background scheduler.

On the first day of each month (in the business timezone) every team gets
a fresh consumption record for the new period with ``credits_used = 0``.
Purchased ``extra_credits`` are never touched and prior periods are kept.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ledger_core.config import LedgerSettings
from ledger_core.periods import local_now, period_key
from ledger_core.state.repository import ConsumptionRepository, TeamRepository
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_api.middleware.prometheus import MONTHLY_RESET_TENANTS_TOTAL

logger = logging.getLogger(__name__)

RESET_NOTE = "Automatic monthly reset; extra credits preserved"


@dataclass
class MonthlyResetReport:
    period: str
    skipped: bool
    day: int
    total_teams: int = 0
    reset_count: int = 0
    failed: list[str] = field(default_factory=list)


class MonthlyResetJob:
    """Reset every team's consumption for the new period.

    Parameters
    ----------
    session_factory:
        Used to open one short session per team so a failure on one team
        cannot poison the others.
    settings:
        Engine settings (business timezone, worker-pool size).
    clock:
        Returns the current instant; defaults to ``datetime.now(UTC)``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: LedgerSettings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(UTC))

    def period_for(self, now: datetime | None = None) -> str:
        """Return the ``YYYY-MM`` key for *now* in the business timezone."""
        local = local_now(self._settings.tz, now or self._clock())
        return period_key(local.year, local.month)

    async def run(self, now: datetime | None = None) -> MonthlyResetReport:
        """Run the reset if today is the first of the month.

        The day-of-month check is done here rather than trusted to the
        trigger, so invoking the job on any other day is a no-op.
        """
        local = local_now(self._settings.tz, now or self._clock())
        period = period_key(local.year, local.month)
        if local.day != 1:
            logger.info("Monthly reset skipped: day %d of %s is not the first", local.day, period)
            return MonthlyResetReport(period=period, skipped=True, day=local.day)

        async with self._session_factory() as session:
            team_ids = await TeamRepository(session).list_ids()

        report = MonthlyResetReport(period=period, skipped=False, day=local.day, total_teams=len(team_ids))
        reset_at = local.isoformat()
        semaphore = asyncio.Semaphore(self._settings.reset_max_concurrency)

        async def _reset_one(team_id: str) -> None:
            async with semaphore:
                try:
                    async with self._session_factory() as session:
                        await ConsumptionRepository(session, team_id).reset_period(
                            period,
                            {"reset_type": "monthly_automatic", "reset_at": reset_at, "note": RESET_NOTE},
                        )
                        await session.commit()
                except Exception as exc:
                    report.failed.append(team_id)
                    MONTHLY_RESET_TENANTS_TOTAL.labels(outcome="failed").inc()
                    logger.error(
                        "Monthly reset failed for tenant=%s period=%s: %s", team_id, period, exc, exc_info=True
                    )
                    return
            report.reset_count += 1
            MONTHLY_RESET_TENANTS_TOTAL.labels(outcome="reset").inc()
            logger.info("Monthly reset tenant=%s period=%s", team_id, period)

        await asyncio.gather(*(_reset_one(team_id) for team_id in team_ids))
        report.failed.sort()

        logger.info(
            "Monthly reset %s complete: %d/%d teams reset, %d failed",
            period,
            report.reset_count,
            report.total_teams,
            len(report.failed),
        )
        return report


class MonthlyResetScheduler:
    """AsyncIO background task that triggers :class:`MonthlyResetJob`.

    Wakes every *interval* seconds.  Once a non-skipped run finishes for a
    period, later wake-ups in the same period do nothing, so each process
    resets at most once per month.
    """

    def __init__(self, job: MonthlyResetJob, interval: float = 3600.0) -> None:
        self._job = job
        self._interval = interval
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._last_period: str | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_period(self) -> str | None:
        """Period of the last completed reset, if any."""
        return self._last_period

    async def start(self) -> None:
        if self._running:
            logger.warning("MonthlyResetScheduler already running; ignoring start()")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("MonthlyResetScheduler started (interval=%.0fs)", self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("MonthlyResetScheduler stopped")

    async def tick(self, now: datetime | None = None) -> MonthlyResetReport | None:
        """Run the job once unless this period was already handled."""
        if self._job.period_for(now) == self._last_period:
            logger.debug("Monthly reset for %s already done by this process", self._last_period)
            return None
        report = await self._job.run(now)
        if not report.skipped:
            self._last_period = report.period
        return report

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except (OperationalError, InterfaceError) as exc:
                logger.error("MonthlyResetScheduler database error: %s", exc, exc_info=True)
            except Exception as exc:
                logger.critical("MonthlyResetScheduler unexpected error: %s", exc, exc_info=True)
                raise
            await asyncio.sleep(self._interval)
