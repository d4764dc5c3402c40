"""Administrative corrections to a team's purchased credit pool.

Four actions are supported (see :class:`AdjustmentAction`).  Each one
writes the new ``extra_credits`` through a compare-and-swap and appends an
:class:`AdjustmentLogEntry` to the current period's consumption record.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from ledger_core.config import LedgerSettings
from ledger_core.credits import apply_adjustment, compute_balance, parse_action, validate_amount
from ledger_core.errors import (
    CreditConflictError,
    MeteringNotConfiguredError,
    MissingReasonError,
    TenantNotFoundError,
)
from ledger_core.models.ledger import (
    AdjustmentAction,
    AdjustmentLogEntry,
    AdjustmentRequest,
    AdjustmentResult,
    AdminActor,
)
from ledger_core.periods import current_period, period_key
from ledger_core.state.repository import ConsumptionRepository, TeamRepository
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_api.middleware.prometheus import ADJUSTMENTS_TOTAL
from ledger_api.services.balance_service import resolve_team_plan_limit
from ledger_api.services.metering_client import MeteringClient

logger = logging.getLogger(__name__)


class CreditAdjustmentService:
    """Apply admin adjustments to ``extra_credits``.

    Parameters
    ----------
    session:
        Active database session.  The caller commits.
    settings:
        Engine settings (timezone, CAS attempt budget).
    metering:
        Client used by ``reset_balance`` to read current consumption.
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

    async def adjust(self, request: AdjustmentRequest, actor: AdminActor) -> AdjustmentResult:
        """Validate and apply *request* on behalf of *actor*.

        Validation runs in a fixed order: reason, action, amount, team.
        For ``reset_balance`` the current period's consumption is read from
        the metering provider before anything is written; if that read
        fails the whole adjustment aborts.

        Raises
        ------
        MissingReasonError
            If the reason is missing or blank.
        UnknownActionError
            If the action is not supported.
        InvalidAmountError
            If add/remove lacks a positive integer amount.
        TenantNotFoundError
            If the team does not exist.
        MeteringNotConfiguredError
            If ``reset_balance`` targets a team without a metering agent.
        MeteringUnavailableError
            If ``reset_balance`` cannot read consumption.
        CreditConflictError
            If concurrent writers kept winning the compare-and-swap.
        """
        reason = (request.reason or "").strip()
        if not reason:
            raise MissingReasonError("A reason is required for every adjustment")
        action = parse_action(request.action)
        amount = validate_amount(action, request.amount)

        teams = TeamRepository(self._session)
        team = await teams.get(request.tenant_id)
        if team is None:
            raise TenantNotFoundError(request.tenant_id)

        year, month = current_period(self._settings.tz)
        period = period_key(year, month)

        metered: int | None = None
        if action is AdjustmentAction.RESET_BALANCE:
            if not team.metering_agent_id:
                raise MeteringNotConfiguredError(
                    "Metering agent is not configured for this team",
                    tenant_id=request.tenant_id,
                )
            reading = await self._metering.credits_spent(team.metering_agent_id, year, month)
            metered = reading.total

        previous, new = await self._swap_extra_credits(teams, request.tenant_id, action, amount, metered)

        entry = AdjustmentLogEntry(
            timestamp=datetime.now(UTC),
            action=action,
            previous_extra_credits=previous,
            new_extra_credits=new,
            amount=amount,
            current_consumption=metered,
            reason=reason,
            admin_user_id=actor.user_id,
            admin_email=actor.email,
        )
        record = await ConsumptionRepository(self._session, request.tenant_id).append_adjustment(
            period,
            entry.to_metadata(),
            credits_used_if_new=metered or 0,
        )

        consumption = metered if metered is not None else record.credits_used
        plan_limit = await resolve_team_plan_limit(self._session, team, self._settings)
        _, new_balance = compute_balance(plan_limit, new, consumption)

        ADJUSTMENTS_TOTAL.labels(action=action.value).inc()
        logger.info(
            "Adjustment %s tenant=%s extra_credits %d -> %d by %s: %s",
            action.value,
            request.tenant_id,
            previous,
            new,
            actor.user_id,
            reason,
            extra={"ledger": {"tenant_id": request.tenant_id, "action": action.value, "delta": new - previous}},
        )
        return AdjustmentResult(
            tenant_id=request.tenant_id,
            team_name=team.name,
            action=action,
            previous_extra_credits=previous,
            new_extra_credits=new,
            delta=new - previous,
            current_consumption=consumption,
            plan_limit=plan_limit,
            new_balance=new_balance,
            log_entry=entry,
        )

    async def _swap_extra_credits(
        self,
        teams: TeamRepository,
        tenant_id: str,
        action: AdjustmentAction,
        amount: int | None,
        metered: int | None,
    ) -> tuple[int, int]:
        """Read-compute-CAS until the write lands; returns ``(previous, new)``."""
        attempts = self._settings.adjustment_max_attempts
        for attempt in range(1, attempts + 1):
            team = await teams.get(tenant_id)
            if team is None:
                raise TenantNotFoundError(tenant_id)
            previous = team.extra_credits
            new = apply_adjustment(action, previous, amount=amount, consumption=metered)
            if await teams.compare_and_set_extra_credits(tenant_id, previous, new):
                return previous, new
            logger.warning(
                "extra_credits changed concurrently for tenant=%s (attempt %d/%d)",
                tenant_id,
                attempt,
                attempts,
            )
        raise CreditConflictError(
            f"extra_credits for team '{tenant_id}' kept changing; retry the adjustment",
            tenant_id=tenant_id,
            attempts=attempts,
        )
