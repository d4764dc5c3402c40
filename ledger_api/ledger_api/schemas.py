"""Request and response bodies for the ledger HTTP API.

Domain results (:class:`BalanceSnapshot`, :class:`AdjustmentResult`,
:class:`PurchaseResult`, :class:`SubscriptionResult`) are returned as-is;
the models here only cover what has no domain counterpart.
"""

from __future__ import annotations

from decimal import Decimal

from ledger_core.models.billing import BillingMethod, TransactionView
from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------


class AdjustCreditsRequest(BaseModel):
    """Admin adjustment input.

    ``action`` and ``reason`` are plain strings so that an unknown action or
    a blank reason is reported by the ledger with its own error code.
    """

    tenant_id: str = Field(..., min_length=1)
    action: str
    reason: str | None = None
    amount: int | None = None


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class PurchaseCreditsRequest(BaseModel):
    credits: int = Field(..., description="Number of credits; must be a pack size from the price table.")
    billing_method: BillingMethod = BillingMethod.UNDEFINED


class SubscribeRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)
    billing_method: BillingMethod = BillingMethod.UNDEFINED


class PriceTableEntry(BaseModel):
    credits: int
    price: Decimal


class PriceTableResponse(BaseModel):
    step_size: int
    minimum: int
    maximum: int
    entries: list[PriceTableEntry]


class TransactionListResponse(BaseModel):
    transactions: list[TransactionView]
    total: int


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class MonthlyResetResponse(BaseModel):
    period: str
    skipped: bool
    day: int
    total_teams: int
    reset_count: int
    failed: list[str] = Field(default_factory=list)


class GatewaySyncResponse(BaseModel):
    matched: int
    skipped: int
    subscriptions: int
    log: list[str] = Field(default_factory=list)
