"""Billing endpoints: credit purchases, plan subscriptions, and history."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query
from ledger_core.models.billing import PurchaseResult, SubscriptionResult
from ledger_core.pricing import CreditPriceTable

from ledger_api.dependencies import GatewayDep, LedgerSettingsDep, SessionDep, TenantDep
from ledger_api.schemas import (
    PriceTableEntry,
    PriceTableResponse,
    PurchaseCreditsRequest,
    SubscribeRequest,
    TransactionListResponse,
)
from ledger_api.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/price-table", response_model=PriceTableResponse)
async def get_price_table(settings: LedgerSettingsDep) -> PriceTableResponse:
    """Return every purchasable credit pack and its price."""
    table = CreditPriceTable.from_settings(settings)
    return PriceTableResponse(
        step_size=table.step_size,
        minimum=table.minimum,
        maximum=table.maximum,
        entries=[PriceTableEntry(credits=c, price=p) for c, p in table.entries().items()],
    )


@router.post("/credits/purchase", response_model=PurchaseResult)
async def purchase_credits(
    body: PurchaseCreditsRequest,
    session: SessionDep,
    settings: LedgerSettingsDep,
    gateway: GatewayDep,
    tenant_id: TenantDep,
) -> PurchaseResult:
    """Create a charge for a credit pack and return its payment link.

    For ``PIX`` the response also carries the QR code when the gateway
    produced one.
    """
    service = PaymentService(session, settings, gateway)
    return await service.purchase_credits(tenant_id, body.credits, body.billing_method)


@router.post("/subscription", response_model=SubscriptionResult)
async def subscribe(
    body: SubscribeRequest,
    session: SessionDep,
    settings: LedgerSettingsDep,
    gateway: GatewayDep,
    tenant_id: TenantDep,
) -> SubscriptionResult:
    """Subscribe the team to a plan and return the first invoice link.

    Responds 503 with ``Retry-After`` when the gateway has not produced the
    invoice in time.
    """
    service = PaymentService(session, settings, gateway)
    return await service.subscribe_to_plan(tenant_id, body.plan_id, body.billing_method)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    session: SessionDep,
    settings: LedgerSettingsDep,
    gateway: GatewayDep,
    tenant_id: TenantDep,
    limit: int = Query(default=50, ge=1, le=200),
) -> TransactionListResponse:
    """Return the team's most recent purchases and subscription payments."""
    transactions = await PaymentService(session, settings, gateway).list_transactions(tenant_id, limit)
    return TransactionListResponse(transactions=transactions, total=len(transactions))
