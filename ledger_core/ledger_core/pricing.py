"""Credit pack price table.

Credits are sold in discrete packs.  The table is materialised once from
settings as an explicit ``credits -> price`` mapping and every purchase is
priced by lookup, so an off-step or out-of-range count can never be
interpolated into a price.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal

from ledger_core.config import LedgerSettings
from ledger_core.errors import InvalidAmountError

_CENTS = Decimal("0.01")


class CreditPriceTable:
    """Immutable mapping of purchasable credit counts to their price.

    Parameters
    ----------
    step_size:
        Credits in one pack step.
    step_price:
        Price charged per step.
    minimum:
        Smallest purchasable credit count (inclusive).
    maximum:
        Largest purchasable credit count (inclusive).
    """

    def __init__(
        self,
        step_size: int,
        step_price: Decimal,
        minimum: int,
        maximum: int,
    ) -> None:
        if step_size <= 0:
            raise ValueError("step_size must be positive")
        self._step_size = step_size
        self._prices: dict[int, Decimal] = {
            credits: (step_price * (credits // step_size)).quantize(_CENTS)
            for credits in range(minimum, maximum + 1, step_size)
        }
        if not self._prices:
            raise ValueError("Price table is empty; check minimum/maximum")

    @classmethod
    def from_settings(cls, settings: LedgerSettings) -> CreditPriceTable:
        return cls(
            step_size=settings.credit_step_size,
            step_price=settings.credit_step_price,
            minimum=settings.credit_purchase_min,
            maximum=settings.credit_purchase_max,
        )

    @property
    def step_size(self) -> int:
        return self._step_size

    @property
    def minimum(self) -> int:
        return min(self._prices)

    @property
    def maximum(self) -> int:
        return max(self._prices)

    def entries(self) -> Mapping[int, Decimal]:
        """Return a read-only view of the full table, ordered by credits."""
        return dict(sorted(self._prices.items()))

    def price_for(self, credit_count: int) -> Decimal:
        """Return the price for exactly *credit_count* credits.

        Raises
        ------
        InvalidAmountError
            If *credit_count* is not a key of the table.
        """
        price = self._prices.get(credit_count)
        if price is None:
            raise InvalidAmountError(
                f"Credits must be a multiple of {self._step_size} between {self.minimum} and {self.maximum}",
                credit_count=credit_count,
            )
        return price
