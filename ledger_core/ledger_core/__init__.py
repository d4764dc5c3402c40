"""Credit ledger core: balance arithmetic, pricing, and the state store."""

__version__ = "0.3.0"
