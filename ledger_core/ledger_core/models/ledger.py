"""Credit ledger domain models.

A team's spendable balance is always derived from three numbers (plan
limit, purchased extra credits, metered consumption) and never stored.
Admin corrections to the purchased pool are described by
:class:`AdjustmentRequest` and leave an immutable :class:`AdjustmentLogEntry`
in the period's consumption record.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AdjustmentAction(str, Enum):
    """Corrective actions an administrator may apply to ``extra_credits``."""

    RESET_BALANCE = "reset_balance"
    ADD_CREDITS = "add_credits"
    REMOVE_CREDITS = "remove_credits"
    CLEAR_EXTRA_CREDITS = "clear_extra_credits"

    @property
    def requires_amount(self) -> bool:
        return self in (AdjustmentAction.ADD_CREDITS, AdjustmentAction.REMOVE_CREDITS)


class BalanceSnapshot(BaseModel):
    """Point-in-time view of a team's credits for one period."""

    tenant_id: str
    period: str = Field(..., description="Calendar month as YYYY-MM.")
    plan_limit: int
    extra_credits: int
    credits_used: int
    total: int = Field(..., description="plan_limit + extra_credits.")
    balance: int = Field(..., description="total - credits_used; negative means overage.")
    stale: bool = Field(
        default=False,
        description="True when consumption came from the stored record because metering was unavailable.",
    )


class AdminActor(BaseModel):
    """Identity of the administrator applying an adjustment."""

    user_id: str
    email: str | None = None


class AdjustmentRequest(BaseModel):
    """Raw adjustment input.

    Fields are deliberately loose (plain strings, optional amount) so that
    validation errors surface as ledger errors in a fixed order rather than
    as schema errors.
    """

    tenant_id: str
    action: str
    reason: str | None = None
    amount: int | None = None


class AdjustmentLogEntry(BaseModel):
    """Append-only audit record stored in the consumption metadata."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    action: AdjustmentAction
    previous_extra_credits: int
    new_extra_credits: int
    amount: int | None = None
    current_consumption: int | None = None
    reason: str
    admin_user_id: str
    admin_email: str | None = None

    def to_metadata(self) -> dict[str, Any]:
        """Serialise for storage inside a JSON column."""
        return self.model_dump(mode="json")


class AdjustmentResult(BaseModel):
    """Outcome of a successful adjustment."""

    tenant_id: str
    team_name: str
    action: AdjustmentAction
    previous_extra_credits: int
    new_extra_credits: int
    delta: int
    current_consumption: int | None = None
    plan_limit: int
    new_balance: int | None = Field(
        default=None,
        description="plan_limit + new_extra_credits - consumption, when consumption is known.",
    )
    log_entry: AdjustmentLogEntry
