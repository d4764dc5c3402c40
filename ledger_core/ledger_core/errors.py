"""Exception hierarchy for the credit ledger.

Every error carries a short machine-readable ``code`` and a ``details``
mapping so that the API layer can render a user-facing message without
inspecting the exception type beyond its class.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    code = "ledger_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(LedgerError):
    """Bad or missing caller input."""

    code = "validation_error"


class InvalidAmountError(InputValidationError):
    """Amount or credit count is missing, non-positive, or not purchasable."""

    code = "invalid_amount"


class MissingReasonError(InputValidationError):
    """An admin adjustment was submitted without a reason."""

    code = "missing_reason"


class MissingTaxIdError(InputValidationError):
    """A gateway customer must be created but the team has no tax id."""

    code = "missing_tax_id"


class UnknownActionError(InputValidationError):
    """The adjustment action is not one of the supported kinds."""

    code = "unknown_action"


class MeteringNotConfiguredError(InputValidationError):
    """The team has no metering agent, so consumption cannot be read."""

    code = "metering_not_configured"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class NotFoundError(LedgerError):
    """A referenced record does not exist."""

    code = "not_found"


class TenantNotFoundError(NotFoundError):
    code = "tenant_not_found"

    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"Team '{tenant_id}' not found", tenant_id=tenant_id)


class PlanNotFoundError(NotFoundError):
    code = "plan_not_found"

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Plan '{plan_id}' not found", plan_id=plan_id)


# ---------------------------------------------------------------------------
# External providers
# ---------------------------------------------------------------------------


class MeteringUnavailableError(LedgerError):
    """The usage metering provider could not be read."""

    code = "metering_unavailable"


class GatewayError(LedgerError):
    """Base class for payment gateway failures."""

    code = "gateway_error"


class GatewayRejectedError(GatewayError):
    """The gateway answered with a non-2xx status.

    ``message`` is the first structured error description the gateway
    returned, or the raw response text when the body is not structured.
    """

    code = "gateway_rejected"

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.status_code = status_code
        self.errors = errors or []


class GatewayUnreachableError(GatewayError):
    """The gateway could not be reached (connect error, timeout, reset)."""

    code = "gateway_unreachable"


class InvoiceNotReadyError(LedgerError):
    """Subscription created but no invoice appeared within the poll budget."""

    code = "invoice_not_ready"

    def __init__(self, subscription_id: str, attempts: int) -> None:
        super().__init__(
            f"Invoice for subscription '{subscription_id}' not available after {attempts} attempts; retry later",
            subscription_id=subscription_id,
            attempts=attempts,
        )
        self.subscription_id = subscription_id
        self.attempts = attempts


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class CreditConflictError(LedgerError):
    """Concurrent writers kept changing ``extra_credits`` under us."""

    code = "credit_conflict"
