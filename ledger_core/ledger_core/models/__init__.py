"""Domain models for the credit ledger."""

from ledger_core.models.billing import (
    BillingMethod,
    PixPayload,
    PurchaseResult,
    SubscriptionResult,
    SubscriptionStatus,
    TransactionKind,
    TransactionStatus,
    TransactionView,
)
from ledger_core.models.ledger import (
    AdjustmentAction,
    AdjustmentLogEntry,
    AdjustmentRequest,
    AdjustmentResult,
    AdminActor,
    BalanceSnapshot,
)

__all__ = [
    "AdjustmentAction",
    "AdjustmentLogEntry",
    "AdjustmentRequest",
    "AdjustmentResult",
    "AdminActor",
    "BalanceSnapshot",
    "BillingMethod",
    "PixPayload",
    "PurchaseResult",
    "SubscriptionResult",
    "SubscriptionStatus",
    "TransactionKind",
    "TransactionStatus",
    "TransactionView",
]
