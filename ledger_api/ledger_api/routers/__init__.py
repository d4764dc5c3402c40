"""API router modules for the credit ledger service."""

from __future__ import annotations

from ledger_api.routers import admin, billing, credits, health, jobs, metrics

__all__ = [
    "admin",
    "billing",
    "credits",
    "health",
    "jobs",
    "metrics",
]
