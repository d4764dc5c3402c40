"""FastAPI dependency injection for settings, database sessions, and provider clients."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException
from ledger_core.config import LedgerSettings, load_settings
from ledger_core.models.ledger import AdminActor
from ledger_core.retry import RetryConfig
from ledger_core.state.database import get_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ledger_api.config import APISettings, load_api_settings
from ledger_api.services.gateway_client import GatewayClient
from ledger_api.services.metering_client import MeteringClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None
_ledger_settings_cache: LedgerSettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


def get_ledger_settings() -> LedgerSettings:
    """Return the cached :class:`LedgerSettings` singleton."""
    global _ledger_settings_cache  # noqa: PLW0603
    if _ledger_settings_cache is None:
        _ledger_settings_cache = load_settings()
    return _ledger_settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]
LedgerSettingsDep = Annotated[LedgerSettings, Depends(get_ledger_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: LedgerSettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory.

    Used by components outside FastAPI's dependency injection, such as the
    monthly reset job, which opens one session per team.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` that commits on clean exit and rolls back on exception."""
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]
SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]

# ---------------------------------------------------------------------------
# Usage metering client
# ---------------------------------------------------------------------------

_metering_client: MeteringClient | None = None


def init_metering_client(settings: APISettings) -> MeteringClient:
    """Create and cache the global :class:`MeteringClient`."""
    global _metering_client  # noqa: PLW0603
    _metering_client = MeteringClient(
        base_url=settings.metering_base_url,
        api_token=settings.metering_api_token.get_secret_value(),
        timeout=settings.metering_timeout,
    )
    return _metering_client


async def dispose_metering_client() -> None:
    global _metering_client  # noqa: PLW0603
    if _metering_client is not None:
        await _metering_client.close()
        _metering_client = None


def get_metering_client() -> MeteringClient:
    """Return the cached :class:`MeteringClient` singleton."""
    if _metering_client is None:
        raise RuntimeError(
            "Metering client has not been initialised. "
            "Ensure init_metering_client() is called during application startup."
        )
    return _metering_client


MeteringDep = Annotated[MeteringClient, Depends(get_metering_client)]

# ---------------------------------------------------------------------------
# Payment gateway client
# ---------------------------------------------------------------------------

_gateway_client: GatewayClient | None = None


def init_gateway_client(settings: APISettings) -> GatewayClient:
    """Create and cache the global :class:`GatewayClient`."""
    global _gateway_client  # noqa: PLW0603
    _gateway_client = GatewayClient(
        base_url=settings.gateway_base_url,
        api_key=settings.gateway_api_key.get_secret_value(),
        timeout=settings.gateway_timeout,
        retry=RetryConfig(
            max_retries=settings.gateway_max_retries,
            base_delay=settings.gateway_retry_base_delay,
        ),
    )
    return _gateway_client


async def dispose_gateway_client() -> None:
    global _gateway_client  # noqa: PLW0603
    if _gateway_client is not None:
        await _gateway_client.close()
        _gateway_client = None


def get_gateway_client() -> GatewayClient:
    """Return the cached :class:`GatewayClient` singleton."""
    if _gateway_client is None:
        raise RuntimeError(
            "Gateway client has not been initialised. "
            "Ensure init_gateway_client() is called during application startup."
        )
    return _gateway_client


GatewayDep = Annotated[GatewayClient, Depends(get_gateway_client)]

# ---------------------------------------------------------------------------
# Tenant / actor identity (headers set by the upstream auth layer)
# ---------------------------------------------------------------------------


def get_tenant_id(x_tenant_id: Annotated[str | None, Header()] = None) -> str:
    """Extract the tenant id from the ``X-Tenant-ID`` header."""
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_tenant_id.strip()


TenantDep = Annotated[str, Depends(get_tenant_id)]


def get_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_email: Annotated[str | None, Header()] = None,
) -> AdminActor:
    """Build the acting admin from ``X-Actor-ID`` / ``X-Actor-Email``."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return AdminActor(user_id=x_actor_id.strip(), email=(x_actor_email or "").strip() or None)


ActorDep = Annotated[AdminActor, Depends(get_actor)]
