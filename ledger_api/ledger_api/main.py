"""FastAPI application entry-point for the credit ledger service."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from ledger_core.errors import (
    CreditConflictError,
    GatewayRejectedError,
    GatewayUnreachableError,
    InputValidationError,
    InvoiceNotReadyError,
    LedgerError,
    MeteringUnavailableError,
    NotFoundError,
)
from sqlalchemy.exc import SQLAlchemyError

from ledger_api import __version__
from ledger_api.config import APISettings, PlatformEnv, load_api_settings
from ledger_api.dependencies import (
    dispose_engine,
    dispose_gateway_client,
    dispose_metering_client,
    get_ledger_settings,
    get_session_factory,
    init_engine,
    init_gateway_client,
    init_metering_client,
)
from ledger_api.middleware.logging import RequestLoggingMiddleware
from ledger_api.middleware.prometheus import PrometheusMiddleware
from ledger_api.routers import admin, billing, credits, health, jobs
from ledger_api.routers import metrics as metrics_router
from ledger_api.services.monthly_reset import MonthlyResetJob, MonthlyResetScheduler

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins.
_STATUS_BY_ERROR: tuple[tuple[type[LedgerError], int], ...] = (
    (InputValidationError, 400),
    (NotFoundError, 404),
    (CreditConflictError, 409),
    (GatewayRejectedError, 502),
    (InvoiceNotReadyError, 503),
    (MeteringUnavailableError, 503),
    (GatewayUnreachableError, 504),
)

_INVOICE_RETRY_AFTER_SECONDS = 30


def status_for(exc: LedgerError) -> int:
    """Return the HTTP status for a ledger error (500 if unmapped)."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Initialise the async database engine.
    - Create tables if they do not exist (dev or local SQLite only;
      production uses Alembic migrations).
    - Initialise the metering and gateway HTTP clients.
    - Start the monthly reset scheduler when enabled.

    On shutdown everything is torn down in reverse order.
    """
    settings: APISettings = load_api_settings()
    ledger_settings = get_ledger_settings()

    # Structured JSON logging.
    if settings.structured_logging:
        from ledger_api.middleware.json_formatter import JSONFormatter

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.INFO)
        logger.info("Structured JSON logging enabled")

    engine = init_engine(ledger_settings)
    is_local = ledger_settings.database_url.startswith("sqlite")
    logger.info(
        "Database engine initialised (%s, %s)",
        ledger_settings.database_url.split("@")[-1][:40],
        "local" if is_local else "postgres",
    )

    if settings.platform_env == PlatformEnv.DEV or is_local:
        from ledger_core.state.tables import Base

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured (%s)", "local SQLite" if is_local else "dev auto-migration")

    init_metering_client(settings)
    logger.info("Metering client initialised (%s)", settings.metering_base_url)
    init_gateway_client(settings)
    logger.info("Gateway client initialised (%s)", settings.gateway_base_url)

    scheduler: MonthlyResetScheduler | None = None
    if settings.reset_scheduler_enabled:
        scheduler = MonthlyResetScheduler(
            MonthlyResetJob(get_session_factory(), ledger_settings),
            interval=settings.reset_check_interval_seconds,
        )
        await scheduler.start()

    yield

    # Shutdown.
    if scheduler is not None:
        await scheduler.stop()
    await dispose_gateway_client()
    await dispose_metering_client()
    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: APISettings | None = None) -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = settings or load_api_settings()

    app = FastAPI(
        title="Credit Ledger API",
        description="Credit balances, admin adjustments, and payment orchestration for team plans.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (outermost first) ----------------------------------------

    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Accept",
            "X-Correlation-ID",
            "X-Tenant-ID",
            "X-Actor-ID",
            "X-Actor-Email",
        ],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(credits.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(billing.router, prefix="/api/v1")
    app.include_router(jobs.router, prefix="/api/v1")

    # Outside /api/v1: Prometheus scrape and readiness probe.
    app.include_router(metrics_router.router)
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        status = status_for(exc)
        log = logger.warning if status < 500 else logger.error
        log("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        headers: dict[str, str] = {}
        if isinstance(exc, InvoiceNotReadyError):
            headers["Retry-After"] = str(_INVOICE_RETRY_AFTER_SECONDS)
        content = {"error": exc.code, "detail": exc.message, **exc.details}
        return JSONResponse(status_code=status, content=jsonable_encoder(content), headers=headers)

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal database error"})

    return app


# Module-level application instance used by ``uvicorn ledger_api.main:app``.
app = create_app()
