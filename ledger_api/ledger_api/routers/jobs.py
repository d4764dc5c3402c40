"""Operational job triggers."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from ledger_api.dependencies import LedgerSettingsDep, SessionFactoryDep
from ledger_api.schemas import MonthlyResetResponse
from ledger_api.services.monthly_reset import MonthlyResetJob

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/monthly-reset", response_model=MonthlyResetResponse)
async def run_monthly_reset(
    session_factory: SessionFactoryDep,
    settings: LedgerSettingsDep,
) -> MonthlyResetResponse:
    """Run the monthly consumption reset.

    A no-op (``skipped: true``) unless today is the first of the month in
    the business timezone, so external cron retries are harmless.
    """
    report = await MonthlyResetJob(session_factory, settings).run()
    return MonthlyResetResponse(
        period=report.period,
        skipped=report.skipped,
        day=report.day,
        total_teams=report.total_teams,
        reset_count=report.reset_count,
        failed=report.failed,
    )
