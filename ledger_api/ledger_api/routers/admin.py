"""Administrative endpoints: credit adjustments and gateway customer sync."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from ledger_core.models.ledger import AdjustmentRequest, AdjustmentResult

from ledger_api.dependencies import (
    ActorDep,
    GatewayDep,
    LedgerSettingsDep,
    MeteringDep,
    SessionDep,
)
from ledger_api.schemas import AdjustCreditsRequest, GatewaySyncResponse
from ledger_api.services.adjustment_service import CreditAdjustmentService
from ledger_api.services.gateway_sync import GatewaySyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/credits/adjust", response_model=AdjustmentResult)
async def adjust_credits(
    body: AdjustCreditsRequest,
    session: SessionDep,
    settings: LedgerSettingsDep,
    metering: MeteringDep,
    actor: ActorDep,
) -> AdjustmentResult:
    """Apply a corrective action to a team's purchased credits."""
    service = CreditAdjustmentService(session, settings, metering)
    return await service.adjust(
        AdjustmentRequest(
            tenant_id=body.tenant_id,
            action=body.action,
            reason=body.reason,
            amount=body.amount,
        ),
        actor,
    )


@router.post("/gateway/sync", response_model=GatewaySyncResponse)
async def sync_gateway_customers(
    session: SessionDep,
    gateway: GatewayDep,
    actor: ActorDep,
) -> GatewaySyncResponse:
    """Link existing gateway customers and active subscriptions to teams."""
    logger.info("Gateway customer sync requested by %s", actor.user_id)
    report = await GatewaySyncService(session, gateway).sync_customers()
    return GatewaySyncResponse(
        matched=report.matched,
        skipped=report.skipped,
        subscriptions=report.subscriptions,
        log=report.log,
    )
