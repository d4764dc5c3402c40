"""Payment and subscription models shared by the orchestrator and the API."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class BillingMethod(str, Enum):
    """Payment method requested from the gateway.

    ``UNDEFINED`` lets the payer choose on the gateway's hosted page.
    """

    UNDEFINED = "UNDEFINED"
    PIX = "PIX"
    CREDIT_CARD = "CREDIT_CARD"
    BOLETO = "BOLETO"

    @property
    def is_instant(self) -> bool:
        return self is BillingMethod.PIX


class TransactionKind(str, Enum):
    CREDIT_PURCHASE = "credit_purchase"
    SUBSCRIPTION = "subscription"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PENDING_PAYMENT = "pending_payment"
    PAST_DUE = "past_due"


class PixPayload(BaseModel):
    """Scannable QR image plus copy-paste code for an instant payment."""

    encoded_image: str = Field(..., description="Base64-encoded PNG of the QR code.")
    payload: str = Field(..., description="Copy-and-paste payment code.")
    expiration_date: str | None = None


class PurchaseResult(BaseModel):
    transaction_id: str
    invoice_url: str | None
    gateway_payment_id: str
    amount: Decimal
    credits: int
    billing_method: BillingMethod
    pix: PixPayload | None = None


class SubscriptionResult(BaseModel):
    transaction_id: str
    subscription_id: str
    invoice_url: str | None
    gateway_payment_id: str
    plan_id: str
    amount: Decimal
    next_due_date: date


class TransactionView(BaseModel):
    """Read model for transaction history listings."""

    id: str
    kind: TransactionKind
    status: TransactionStatus
    amount: Decimal
    description: str
    invoice_url: str | None = None
    external_reference: str | None = None
    failure_reason: str | None = None
    created_at: datetime
