"""Shared fixtures for ledger core tests.

Persistence tests run against an in-memory SQLite database through
aiosqlite, using the same ORM tables as production.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ledger_core.config import LedgerSettings
from ledger_core.state.repository import PlanRepository, TeamRepository
from ledger_core.state.sqlite_adapter import create_local_tables, get_local_engine


@pytest.fixture()
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(database_url="sqlite+aiosqlite:///:memory:", _env_file=None)


@pytest_asyncio.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    eng = get_local_engine(":memory:")
    await create_local_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as s:
        yield s


@pytest_asyncio.fixture()
async def seeded(session: AsyncSession) -> AsyncSession:
    """Session with one plan and two teams committed."""
    await PlanRepository(session).create("pro", "Pro", Decimal("199.90"), credit_limit=5000)
    teams = TeamRepository(session)
    await teams.create(
        "team-a",
        "Alpha Legal",
        billing_email="billing@alpha.example",
        tax_id="12.345.678/0001-90",
        plan_id="pro",
        extra_credits=200,
    )
    await teams.create("team-b", "Beta Advocacia", billing_email="Finance@Beta.example")
    await session.commit()
    return session
