"""HTTP service for the credit ledger and payment orchestration."""

__version__ = "0.3.0"
