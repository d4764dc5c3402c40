"""Credit balance computation.

Combines the team's plan limit, purchased extra credits, and metered
consumption into a :class:`BalanceSnapshot`, and records the consumption
for the period.  The balance itself is never stored.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from ledger_core.config import LedgerSettings
from ledger_core.credits import compute_balance, resolve_plan_limit
from ledger_core.errors import MeteringNotConfiguredError, MeteringUnavailableError, TenantNotFoundError
from ledger_core.models.ledger import BalanceSnapshot
from ledger_core.periods import current_period, period_key
from ledger_core.state.repository import ConsumptionRepository, PlanRepository, TeamRepository
from ledger_core.state.tables import TeamTable
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_api.services.metering_client import MeteringClient

logger = logging.getLogger(__name__)


async def resolve_team_plan_limit(session: AsyncSession, team: TeamTable, settings: LedgerSettings) -> int:
    """Three-tier plan limit: team override, then plan default, then fallback."""
    plan_limit: int | None = None
    if team.plan_id is not None:
        plan = await PlanRepository(session).get(team.plan_id)
        if plan is not None:
            plan_limit = plan.credit_limit
    return resolve_plan_limit(team.plan_limit_override, plan_limit, settings.default_plan_limit)


class CreditBalanceService:
    """Compute and record a team's credit balance.

    Parameters
    ----------
    session:
        Active database session.  The caller commits.
    settings:
        Engine settings (fallback plan limit, business timezone).
    metering:
        Client for the usage metering provider.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: LedgerSettings,
        metering: MeteringClient,
    ) -> None:
        self._session = session
        self._settings = settings
        self._metering = metering

    async def compute_balance(
        self,
        tenant_id: str,
        year: int | None = None,
        month: int | None = None,
        *,
        allow_stale: bool = True,
    ) -> BalanceSnapshot:
        """Return the balance snapshot for *tenant_id* in *year*/*month*.

        Missing *year*/*month* default to the current period in the business
        timezone.  When the metering provider is down and *allow_stale* is
        set, the stored consumption for the period (or 0) is used, the
        snapshot is flagged ``stale``, and nothing is written.

        Raises
        ------
        TenantNotFoundError
            If the team does not exist.
        MeteringNotConfiguredError
            If the team has no metering agent.
        MeteringUnavailableError
            If metering fails and *allow_stale* is false.
        """
        team = await TeamRepository(self._session).get(tenant_id)
        if team is None:
            raise TenantNotFoundError(tenant_id)
        if not team.metering_agent_id:
            raise MeteringNotConfiguredError("Metering agent is not configured for this team", tenant_id=tenant_id)

        if year is None or month is None:
            cur_year, cur_month = current_period(self._settings.tz)
            year = year if year is not None else cur_year
            month = month if month is not None else cur_month
        period = period_key(year, month)

        plan_limit = await resolve_team_plan_limit(self._session, team, self._settings)
        consumption = ConsumptionRepository(self._session, tenant_id)

        stale = False
        try:
            reading = await self._metering.credits_spent(team.metering_agent_id, year, month)
        except MeteringUnavailableError:
            if not allow_stale:
                raise
            cached = await consumption.get(period)
            credits_used = cached.credits_used if cached is not None else 0
            stale = True
            logger.warning(
                "Metering unavailable for tenant=%s period=%s; using stored consumption %d",
                tenant_id,
                period,
                credits_used,
            )
        else:
            credits_used = reading.total
            await consumption.upsert_usage(
                period,
                credits_used,
                {
                    "provider_payload": reading.payload,
                    "last_synced_at": datetime.now(UTC).isoformat(),
                },
            )

        total, balance = compute_balance(plan_limit, team.extra_credits, credits_used)
        logger.info(
            "Balance tenant=%s period=%s plan_limit=%d extra=%d used=%d balance=%d%s",
            tenant_id,
            period,
            plan_limit,
            team.extra_credits,
            credits_used,
            balance,
            " (stale)" if stale else "",
        )
        return BalanceSnapshot(
            tenant_id=tenant_id,
            period=period,
            plan_limit=plan_limit,
            extra_credits=team.extra_credits,
            credits_used=credits_used,
            total=total,
            balance=balance,
            stale=stale,
        )
