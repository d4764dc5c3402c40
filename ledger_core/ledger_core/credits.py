"""Pure credit arithmetic.

Nothing here touches I/O.  The services feed in numbers read from the
state store and the metering provider and persist whatever comes back.
"""

from __future__ import annotations

from ledger_core.errors import InvalidAmountError, UnknownActionError
from ledger_core.models.ledger import AdjustmentAction


def resolve_plan_limit(
    override: int | None,
    plan_limit: int | None,
    fallback: int,
) -> int:
    """Resolve a team's monthly allowance.

    The per-team override wins, then the plan's own limit, then the
    configured fallback.  An explicit ``0`` at either tier is honoured.
    """
    if override is not None:
        return override
    if plan_limit is not None:
        return plan_limit
    return fallback


def compute_balance(plan_limit: int, extra_credits: int, credits_used: int) -> tuple[int, int]:
    """Return ``(total, balance)``.

    The balance may be negative; that is a valid overage state.
    """
    total = plan_limit + extra_credits
    return total, total - credits_used


def parse_action(action: str | AdjustmentAction) -> AdjustmentAction:
    """Coerce *action* to :class:`AdjustmentAction`.

    Raises
    ------
    UnknownActionError
        If *action* is not a supported adjustment.
    """
    if isinstance(action, AdjustmentAction):
        return action
    try:
        return AdjustmentAction(action)
    except ValueError:
        allowed = ", ".join(a.value for a in AdjustmentAction)
        raise UnknownActionError(f"Unknown action '{action}'. Expected one of: {allowed}", action=action) from None


def _positive_amount(action: AdjustmentAction, amount: int | None) -> int:
    if amount is None or isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(
            f"Action '{action.value}' requires a positive integer amount",
            action=action.value,
            amount=amount,
        )
    return amount


def validate_amount(action: AdjustmentAction, amount: int | None) -> int | None:
    """Check that add/remove carry a positive integer amount.

    Returns the amount for actions that use it, ``None`` otherwise.
    """
    if not action.requires_amount:
        return None
    return _positive_amount(action, amount)


def apply_adjustment(
    action: AdjustmentAction,
    previous: int,
    *,
    amount: int | None = None,
    consumption: int | None = None,
) -> int:
    """Return the new ``extra_credits`` value for *action*.

    ``remove_credits`` has no floor: the pool may go negative.
    ``reset_balance`` grows the pool by exactly the period's consumption.

    Raises
    ------
    InvalidAmountError
        If add/remove is given no positive integer amount.
    """
    if action is AdjustmentAction.ADD_CREDITS:
        return previous + _positive_amount(action, amount)
    if action is AdjustmentAction.REMOVE_CREDITS:
        return previous - _positive_amount(action, amount)
    if action is AdjustmentAction.CLEAR_EXTRA_CREDITS:
        return 0
    if action is AdjustmentAction.RESET_BALANCE:
        if consumption is None:
            raise ValueError("reset_balance requires the current consumption")
        return previous + consumption
    raise UnknownActionError(f"Unknown action '{action}'", action=str(action))
