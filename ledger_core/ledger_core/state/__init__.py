"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from ledger_core.state.database import get_engine, get_session, get_session_factory
from ledger_core.state.repository import (
    ConsumptionRepository,
    PlanRepository,
    TeamRepository,
    TransactionRepository,
)

__all__ = [
    "ConsumptionRepository",
    "PlanRepository",
    "TeamRepository",
    "TransactionRepository",
    "get_engine",
    "get_session",
    "get_session_factory",
]
