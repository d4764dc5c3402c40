"""Payment orchestration: one-off credit purchases and plan subscriptions.

Purchases follow a fixed protocol so that every gateway charge can be
reconciled with a local row:

1. price the pack from the price table;
2. insert a ``pending`` transaction and **commit** it;
3. provision the gateway customer and create the charge, tagged with
   ``credits_<transaction id>``;
4. on any failure after step 2, mark the transaction ``failed`` and commit
   before re-raising.

Subscriptions do not return a payment link synchronously.  The gateway
customer id is committed before the subscription is created.  After
creating one, the first invoice is polled for at a fixed interval with a
hard attempt ceiling, and only then is a ``pending`` transaction recorded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from ledger_core.config import LedgerSettings
from ledger_core.errors import (
    GatewayRejectedError,
    GatewayUnreachableError,
    InvoiceNotReadyError,
    LedgerError,
    PlanNotFoundError,
    TenantNotFoundError,
)
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
from ledger_core.periods import first_of_next_month, local_now
from ledger_core.pricing import CreditPriceTable
from ledger_core.retry import PollConfig, poll_until
from ledger_core.state.repository import PlanRepository, TeamRepository, TransactionRepository
from ledger_core.state.tables import TeamTable
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_api.middleware.prometheus import INVOICE_POLL_ATTEMPTS
from ledger_api.services.customer_provisioning import CustomerProvisioningService
from ledger_api.services.gateway_client import GatewayClient

logger = logging.getLogger(__name__)

PURCHASE_REFERENCE_PREFIX = "credits_"


def subscription_reference(tenant_id: str, plan_id: str) -> str:
    return f"sub_{tenant_id}_{plan_id}"


class PaymentService:
    """Drive credit purchases and subscriptions through the gateway.

    Parameters
    ----------
    session:
        Active database session.  :meth:`purchase_credits` and
        :meth:`subscribe_to_plan` commit on their own at the protocol
        checkpoints; other writes are left to the caller.
    settings:
        Engine settings (price table, due dates, poll budget, timezone).
    gateway:
        Payment gateway client.
    sleep:
        Awaitable used between invoice polls; tests inject a no-op.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: LedgerSettings,
        gateway: GatewayClient,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session = session
        self._settings = settings
        self._gateway = gateway
        self._sleep = sleep
        self._prices = CreditPriceTable.from_settings(settings)
        self._provisioning = CustomerProvisioningService(session, gateway)

    @property
    def price_table(self) -> CreditPriceTable:
        return self._prices

    async def _require_team(self, tenant_id: str) -> TeamTable:
        team = await TeamRepository(self._session).get(tenant_id)
        if team is None:
            raise TenantNotFoundError(tenant_id)
        return team

    # -- One-off purchases ---------------------------------------------------

    async def purchase_credits(
        self,
        tenant_id: str,
        credit_count: int,
        billing_method: BillingMethod = BillingMethod.UNDEFINED,
    ) -> PurchaseResult:
        """Buy a credit pack and return the payment link.

        Raises
        ------
        InvalidAmountError
            If *credit_count* is not a purchasable pack size.
        TenantNotFoundError
            If the team does not exist.
        MissingTaxIdError, GatewayRejectedError, GatewayUnreachableError
            After the pending transaction was marked ``failed``.
        """
        amount = self._prices.price_for(credit_count)
        team = await self._require_team(tenant_id)

        txn_repo = TransactionRepository(self._session, tenant_id)
        txn = await txn_repo.create_pending(
            kind=TransactionKind.CREDIT_PURCHASE.value,
            amount=amount,
            description=f"Purchase of {credit_count} credits",
            metadata={"credits": credit_count, "billing_method": billing_method.value},
            external_reference_prefix=PURCHASE_REFERENCE_PREFIX,
        )
        txn_id = txn.id
        external_reference = txn.external_reference
        assert external_reference is not None  # noqa: S101
        await self._session.commit()
        logger.info("Pending purchase %s tenant=%s credits=%d amount=%s", txn_id, tenant_id, credit_count, amount)

        try:
            customer_id = await self._provisioning.ensure_customer(team)
            due_date = local_now(self._settings.tz).date() + timedelta(days=self._settings.charge_due_days)
            charge = await self._gateway.create_charge(
                customer_id=customer_id,
                amount=amount,
                due_date=due_date,
                description=f"Top-up of {credit_count} credits",
                external_reference=external_reference,
                billing_method=billing_method.value,
            )
            if not charge.invoice_url:
                raise GatewayRejectedError("Gateway did not return a payment link", status_code=200)
            await txn_repo.attach_invoice(txn_id, invoice_url=charge.invoice_url, gateway_payment_id=charge.id)
            await self._session.commit()
        except LedgerError as exc:
            await txn_repo.mark_failed(txn_id, exc.message)
            await self._session.commit()
            logger.warning("Purchase %s tenant=%s failed: %s", txn_id, tenant_id, exc.message)
            raise

        pix: PixPayload | None = None
        if billing_method.is_instant:
            pix = await self._fetch_pix(charge.id, txn_id)

        logger.info(
            "Purchase %s tenant=%s invoiced (payment=%s)",
            txn_id,
            tenant_id,
            charge.id,
            extra={"ledger": {"tenant_id": tenant_id, "transaction_id": txn_id, "kind": "credit_purchase"}},
        )
        return PurchaseResult(
            transaction_id=txn_id,
            invoice_url=charge.invoice_url,
            gateway_payment_id=charge.id,
            amount=amount,
            credits=credit_count,
            billing_method=billing_method,
            pix=pix,
        )

    async def _fetch_pix(self, charge_id: str, txn_id: str) -> PixPayload | None:
        """Fetch the instant-payment code; the charge stands even if this fails."""
        try:
            qr = await self._gateway.get_pix_qr_code(charge_id)
        except (GatewayRejectedError, GatewayUnreachableError) as exc:
            logger.warning("PIX code unavailable for purchase %s (payment=%s): %s", txn_id, charge_id, exc.message)
            return None
        return PixPayload(encoded_image=qr.encoded_image, payload=qr.payload, expiration_date=qr.expiration_date)

    # -- Subscriptions -------------------------------------------------------

    async def subscribe_to_plan(
        self,
        tenant_id: str,
        plan_id: str,
        billing_method: BillingMethod = BillingMethod.UNDEFINED,
    ) -> SubscriptionResult:
        """Create a recurring subscription and return its first invoice link.

        The first invoice is billed on the first day of the next calendar
        month in the business timezone.

        Raises
        ------
        TenantNotFoundError, PlanNotFoundError
            If the team or plan does not exist.
        InvoiceNotReadyError
            If no invoice appeared within the poll budget.  No transaction
            is recorded in that case.
        MissingTaxIdError, GatewayRejectedError, GatewayUnreachableError
            If provisioning or subscription creation fails.
        """
        team = await self._require_team(tenant_id)
        plan = await PlanRepository(self._session).get(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)

        customer_id = await self._provisioning.ensure_customer(team)
        await self._session.commit()
        next_due = first_of_next_month(local_now(self._settings.tz).date())
        reference = subscription_reference(tenant_id, plan_id)

        subscription = await self._gateway.create_subscription(
            customer_id=customer_id,
            amount=plan.monthly_price,
            next_due_date=next_due,
            cycle=self._settings.subscription_cycle,
            description=f"Subscription {plan.name}",
            external_reference=reference,
            billing_method=billing_method.value,
        )
        logger.info(
            "Subscription %s created for tenant=%s plan=%s; polling for invoice",
            subscription.id,
            tenant_id,
            plan_id,
        )

        async def _first_invoice() -> dict[str, Any] | None:
            page = await self._gateway.list_subscription_payments(subscription.id, limit=1)
            item = page.first()
            if item and item.get("id") and item.get("invoiceUrl"):
                return item
            return None

        result = await poll_until(
            _first_invoice,
            PollConfig(
                interval=self._settings.invoice_poll_interval_seconds,
                max_attempts=self._settings.invoice_poll_max_attempts,
            ),
            transient_exceptions=(GatewayUnreachableError,),
            sleep=self._sleep,
        )
        if not result.ok:
            logger.error(
                "No invoice for subscription %s (tenant=%s plan=%s reference=%s) after %d attempts; "
                "subscription exists at the gateway without a local transaction",
                subscription.id,
                tenant_id,
                plan_id,
                reference,
                result.attempts,
            )
            raise InvoiceNotReadyError(subscription.id, result.attempts)

        INVOICE_POLL_ATTEMPTS.observe(result.attempts)
        invoice = result.value
        assert invoice is not None  # noqa: S101

        txn = await TransactionRepository(self._session, tenant_id).create_pending(
            kind=TransactionKind.SUBSCRIPTION.value,
            amount=plan.monthly_price,
            description=f"Subscription {plan.name}",
            metadata={"subscription_id": subscription.id, "plan_id": plan_id},
            external_reference=reference,
            invoice_url=invoice["invoiceUrl"],
            gateway_payment_id=str(invoice["id"]),
        )
        await TeamRepository(self._session).set_subscription(
            tenant_id,
            subscription_id=subscription.id,
            status=SubscriptionStatus.PENDING_PAYMENT.value,
            plan_id=plan_id,
            next_due_date=next_due,
        )
        logger.info(
            "Subscription %s tenant=%s invoiced after %d poll(s)",
            subscription.id,
            tenant_id,
            result.attempts,
            extra={"ledger": {"tenant_id": tenant_id, "transaction_id": txn.id, "kind": "subscription"}},
        )
        return SubscriptionResult(
            transaction_id=txn.id,
            subscription_id=subscription.id,
            invoice_url=invoice["invoiceUrl"],
            gateway_payment_id=str(invoice["id"]),
            plan_id=plan_id,
            amount=plan.monthly_price,
            next_due_date=next_due,
        )

    # -- History -------------------------------------------------------------

    async def list_transactions(self, tenant_id: str, limit: int = 50) -> list[TransactionView]:
        rows = await TransactionRepository(self._session, tenant_id).list_recent(limit)
        return [
            TransactionView(
                id=row.id,
                kind=TransactionKind(row.kind),
                status=TransactionStatus(row.status),
                amount=row.amount,
                description=row.description,
                invoice_url=row.invoice_url,
                external_reference=row.external_reference,
                failure_reason=row.failure_reason,
                created_at=row.created_at,
            )
            for row in rows
        ]
