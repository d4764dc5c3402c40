"""HTTP client for the payment gateway.

Wraps the gateway's customer, charge, and subscription endpoints.  Every
call either returns a parsed value or raises a :class:`GatewayError`
subclass:

* non-2xx responses become :class:`GatewayRejectedError` carrying the
  first structured ``errors[].description`` (or the raw body);
* transport failures become :class:`GatewayUnreachableError`.

Idempotent GETs retry transport failures with exponential backoff.  POSTs
are never retried: a timed-out create may still have happened remotely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

import httpx
from ledger_core.envelope import Page
from ledger_core.errors import GatewayRejectedError, GatewayUnreachableError
from ledger_core.retry import RetryConfig, async_retry_with_backoff

from ledger_api.middleware.prometheus import GATEWAY_REQUESTS_TOTAL

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GatewayCustomer:
    id: str
    name: str | None = None
    email: str | None = None
    tax_id: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> GatewayCustomer:
        return cls(
            id=str(payload["id"]),
            name=payload.get("name"),
            email=payload.get("email"),
            tax_id=payload.get("cpfCnpj"),
        )


@dataclass(frozen=True)
class GatewayCharge:
    id: str
    invoice_url: str | None
    status: str | None = None
    value: Decimal | None = None
    due_date: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> GatewayCharge:
        value = payload.get("value")
        return cls(
            id=str(payload["id"]),
            invoice_url=payload.get("invoiceUrl"),
            status=payload.get("status"),
            value=Decimal(str(value)) if value is not None else None,
            due_date=payload.get("dueDate"),
            raw=payload,
        )


@dataclass(frozen=True)
class GatewaySubscription:
    id: str
    status: str | None = None
    next_due_date: date | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> GatewaySubscription:
        raw_due = payload.get("nextDueDate")
        return cls(
            id=str(payload["id"]),
            status=payload.get("status"),
            next_due_date=date.fromisoformat(raw_due) if raw_due else None,
        )


@dataclass(frozen=True)
class PixQrCode:
    encoded_image: str
    payload: str
    expiration_date: str | None = None


def _error_message(response: httpx.Response) -> tuple[str, list[dict[str, Any]]]:
    """Extract the gateway's structured error description, if any."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            structured = [e for e in errors if isinstance(e, dict)]
            for err in structured:
                if err.get("description"):
                    return str(err["description"]), structured
            return f"Gateway returned HTTP {response.status_code}", structured
    text = response.text.strip()
    return (text[:500] if text else f"Gateway returned HTTP {response.status_code}"), []


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GatewayClient:
    """Async client for the payment gateway REST API.

    Parameters
    ----------
    base_url:
        Root URL of the gateway API (e.g. ``https://api.asaas.com/v3``).
    api_key:
        Credential sent in the ``access_token`` header.
    timeout:
        Per-request timeout in seconds.
    retry:
        Backoff parameters for GET requests.
    client:
        Pre-built ``httpx.AsyncClient``; tests pass one wired to a
        ``MockTransport``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        retry: RetryConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._retry = retry or RetryConfig()
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["access_token"] = api_key
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
            headers=headers,
        )

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    # -- Customers -----------------------------------------------------------

    async def find_customer(self, *, email: str | None = None, tax_id: str | None = None) -> GatewayCustomer | None:
        """Return the first customer matching *email* or *tax_id*.

        Exactly one of the two must be given.
        """
        if (email is None) == (tax_id is None):
            raise ValueError("find_customer needs exactly one of email or tax_id")
        params = {"email": email} if email is not None else {"cpfCnpj": tax_id}
        body = await self._get("/customers", "find_customer", params=params)
        item = Page.from_payload(body).first()
        return GatewayCustomer.from_payload(item) if item and item.get("id") else None

    async def create_customer(self, *, name: str, email: str | None, tax_id: str) -> GatewayCustomer:
        payload: dict[str, Any] = {"name": name, "cpfCnpj": tax_id}
        if email:
            payload["email"] = email
        body = await self._post("/customers", "create_customer", payload)
        return GatewayCustomer.from_payload(body)

    async def list_customers(self, *, offset: int = 0, limit: int = 100) -> Page:
        body = await self._get("/customers", "list_customers", params={"offset": offset, "limit": limit})
        return Page.from_payload(body)

    # -- Charges -------------------------------------------------------------

    async def create_charge(
        self,
        *,
        customer_id: str,
        amount: Decimal,
        due_date: date,
        description: str,
        external_reference: str,
        billing_method: str,
    ) -> GatewayCharge:
        body = await self._post(
            "/payments",
            "create_charge",
            {
                "customer": customer_id,
                "billingType": billing_method,
                "value": float(amount),
                "dueDate": due_date.isoformat(),
                "description": description,
                "externalReference": external_reference,
            },
        )
        return GatewayCharge.from_payload(body)

    async def get_pix_qr_code(self, charge_id: str) -> PixQrCode:
        body = await self._get(f"/payments/{charge_id}/pixQrCode", "get_pix_qr_code")
        if not isinstance(body, dict) or not body.get("encodedImage") or not body.get("payload"):
            raise GatewayRejectedError("Gateway returned an incomplete PIX QR code", status_code=200)
        return PixQrCode(
            encoded_image=body["encodedImage"],
            payload=body["payload"],
            expiration_date=body.get("expirationDate"),
        )

    # -- Subscriptions -------------------------------------------------------

    async def create_subscription(
        self,
        *,
        customer_id: str,
        amount: Decimal,
        next_due_date: date,
        cycle: str,
        description: str,
        external_reference: str,
        billing_method: str,
    ) -> GatewaySubscription:
        body = await self._post(
            "/subscriptions",
            "create_subscription",
            {
                "customer": customer_id,
                "billingType": billing_method,
                "value": float(amount),
                "nextDueDate": next_due_date.isoformat(),
                "cycle": cycle,
                "description": description,
                "externalReference": external_reference,
            },
        )
        return GatewaySubscription.from_payload(body)

    async def list_subscription_payments(self, subscription_id: str, *, limit: int = 1, offset: int = 0) -> Page:
        body = await self._get(
            f"/subscriptions/{subscription_id}/payments",
            "list_subscription_payments",
            params={"limit": limit, "offset": offset},
        )
        return Page.from_payload(body)

    async def list_subscriptions(self, *, customer_id: str, status: str | None = "ACTIVE") -> list[GatewaySubscription]:
        params: dict[str, Any] = {"customer": customer_id}
        if status is not None:
            params["status"] = status
        body = await self._get("/subscriptions", "list_subscriptions", params=params)
        return [GatewaySubscription.from_payload(item) for item in Page.from_payload(body).items if item.get("id")]

    # -- Internal helpers ----------------------------------------------------

    async def _get(self, path: str, operation: str, *, params: dict[str, Any] | None = None) -> Any:
        return await async_retry_with_backoff(
            lambda: self._request("GET", path, operation, params=params),
            self._retry,
            retryable_exceptions=(GatewayUnreachableError,),
        )

    async def _post(self, path: str, operation: str, payload: dict[str, Any]) -> Any:
        return await self._request("POST", path, operation, json=payload)

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.RequestError as exc:
            GATEWAY_REQUESTS_TOTAL.labels(operation=operation, outcome="unreachable").inc()
            logger.warning("Gateway %s %s failed: %s", method, path, exc)
            raise GatewayUnreachableError(f"Payment gateway is unreachable ({operation})", operation=operation) from exc

        if response.is_success:
            GATEWAY_REQUESTS_TOTAL.labels(operation=operation, outcome="ok").inc()
            try:
                return response.json()
            except ValueError as exc:
                raise GatewayRejectedError(
                    f"Gateway returned a non-JSON body for {operation}",
                    status_code=response.status_code,
                ) from exc

        GATEWAY_REQUESTS_TOTAL.labels(operation=operation, outcome="rejected").inc()
        message, errors = _error_message(response)
        logger.warning("Gateway %s %s returned %d: %s", method, path, response.status_code, message)
        raise GatewayRejectedError(message, status_code=response.status_code, errors=errors)
