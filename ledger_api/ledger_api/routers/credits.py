"""Credit balance endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query
from ledger_core.models.ledger import BalanceSnapshot

from ledger_api.dependencies import LedgerSettingsDep, MeteringDep, SessionDep, TenantDep
from ledger_api.services.balance_service import CreditBalanceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=BalanceSnapshot)
async def get_balance(
    session: SessionDep,
    settings: LedgerSettingsDep,
    metering: MeteringDep,
    tenant_id: TenantDep,
    year: int | None = Query(default=None, ge=2000, le=9999),
    month: int | None = Query(default=None, ge=1, le=12),
) -> BalanceSnapshot:
    """Return the team's balance for a period (default: the current one).

    When the metering provider is down the stored consumption is used and
    the snapshot is flagged ``stale``.
    """
    service = CreditBalanceService(session, settings, metering)
    return await service.compute_balance(tenant_id, year, month)
