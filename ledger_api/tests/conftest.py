"""Shared fixtures for ledger API tests.

Services run against an in-memory SQLite database.  The metering provider
and payment gateway are real clients wired to ``httpx.MockTransport``
handlers, so request shapes and error decoding are exercised end to end.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Callable
from decimal import Decimal
from typing import Any

import httpx
import pytest
import pytest_asyncio
from ledger_core.config import LedgerSettings
from ledger_core.retry import RetryConfig
from ledger_core.state.repository import PlanRepository, TeamRepository
from ledger_core.state.sqlite_adapter import create_local_tables, get_local_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ledger_api.services.gateway_client import GatewayClient
from ledger_api.services.metering_client import MeteringClient

GATEWAY_URL = "https://gateway.test"
METERING_URL = "https://metering.test"


# ---------------------------------------------------------------------------
# Mock HTTP handler
# ---------------------------------------------------------------------------


class RouteHandler:
    """``MockTransport`` handler keyed by ``(method, path)``.

    A route value may be a ``(status, body)`` tuple, a callable taking the
    request, or a list of either, consumed in order (the last one repeats).
    Unrouted requests get a 404 in the gateway's error format.
    """

    def __init__(self, routes: dict[tuple[str, str], Any] | None = None) -> None:
        self.routes: dict[tuple[str, str], Any] = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        route = self.routes.get(key)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            return httpx.Response(404, json={"errors": [{"code": "not_found", "description": f"No route {key}"}]})
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def body(request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content)


# ---------------------------------------------------------------------------
# Settings and database
# ---------------------------------------------------------------------------


@pytest.fixture()
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(
        database_url="sqlite+aiosqlite:///:memory:",
        invoice_poll_interval_seconds=0.0,
        invoice_poll_max_attempts=3,
        reset_max_concurrency=1,
        _env_file=None,
    )


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
    """Session with one plan and three teams committed.

    - ``team-a``: on plan ``pro`` (5000 credits), 200 extra, metering agent,
      tax id, no gateway customer yet.
    - ``team-b``: no plan, no agent, no tax id.
    - ``team-c``: no plan (fallback limit), 200 extra, metering agent, and an
      existing gateway customer.
    """
    await PlanRepository(session).create("pro", "Pro", Decimal("199.90"), credit_limit=5000)
    teams = TeamRepository(session)
    await teams.create(
        "team-a",
        "Alpha Legal",
        billing_email="billing@alpha.example",
        tax_id="12.345.678/0001-90",
        plan_id="pro",
        extra_credits=200,
        metering_agent_id="agent-a",
    )
    await teams.create("team-b", "Beta Advocacia", billing_email="Finance@Beta.example")
    await teams.create(
        "team-c",
        "Gamma Juridico",
        billing_email="ops@gamma.example",
        tax_id="987.654.321-00",
        extra_credits=200,
        metering_agent_id="agent-c",
        gateway_customer_id="cus_gamma",
    )
    await session.commit()
    return session


# ---------------------------------------------------------------------------
# Provider clients
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_gateway() -> Callable[..., tuple[GatewayClient, RouteHandler]]:
    """Factory for a :class:`GatewayClient` backed by a :class:`RouteHandler`."""

    def _make(
        routes: dict[tuple[str, str], Any] | None = None,
        retry: RetryConfig | None = None,
    ) -> tuple[GatewayClient, RouteHandler]:
        handler = RouteHandler(routes)
        client = GatewayClient(
            GATEWAY_URL,
            retry=retry or RetryConfig(max_retries=0),
            client=httpx.AsyncClient(base_url=GATEWAY_URL, transport=httpx.MockTransport(handler)),
        )
        return client, handler

    return _make


@pytest.fixture()
def make_metering() -> Callable[..., tuple[MeteringClient, RouteHandler]]:
    """Factory for a :class:`MeteringClient`.

    *totals* maps agent id to the ``total`` the provider reports, or to an
    int HTTP status >= 400 wrapped in a tuple ``("status", code)``.
    """

    def _make(totals: dict[str, Any]) -> tuple[MeteringClient, RouteHandler]:
        routes: dict[tuple[str, str], Any] = {}
        for agent_id, total in totals.items():
            path = f"/agent/{agent_id}/credits-spent"
            if isinstance(total, tuple):
                routes[("GET", path)] = (total[1], {"error": "provider failure"})
            else:
                routes[("GET", path)] = (200, {"total": total, "agent": agent_id})
        handler = RouteHandler(routes)
        client = MeteringClient(
            METERING_URL,
            client=httpx.AsyncClient(base_url=METERING_URL, transport=httpx.MockTransport(handler)),
        )
        return client, handler

    return _make
