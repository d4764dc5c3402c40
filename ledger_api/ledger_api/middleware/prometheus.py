"""Prometheus metrics for HTTP traffic and ledger operations.

Exposes RED metrics (rate, errors, duration) for every request plus
domain counters incremented by the services.  Path parameters are
collapsed (``/transactions/3f2a...`` -> ``/transactions/{id}``) to keep
label cardinality bounded.
"""

from __future__ import annotations

import logging
import re
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

HTTP_REQUESTS_TOTAL = Counter(
    "ledger_http_requests_total",
    "Total HTTP requests by method, path, and status code",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "ledger_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

ADJUSTMENTS_TOTAL = Counter(
    "ledger_adjustments_total",
    "Admin credit adjustments applied, by action",
    ["action"],
)

GATEWAY_REQUESTS_TOTAL = Counter(
    "ledger_gateway_requests_total",
    "Payment gateway calls by operation and outcome",
    ["operation", "outcome"],
)

MONTHLY_RESET_TENANTS_TOTAL = Counter(
    "ledger_monthly_reset_tenants_total",
    "Per-team outcomes of the monthly consumption reset",
    ["outcome"],
)

INVOICE_POLL_ATTEMPTS = Histogram(
    "ledger_invoice_poll_attempts",
    "Attempts needed before a subscription's first invoice appeared",
    buckets=(1, 2, 3, 5, 10, 20, 30, 60),
)

_PATH_PARAM_PATTERNS = [
    (re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"), "/{id}"),
    (re.compile(r"/[0-9a-f]{12,64}"), "/{id}"),
    (re.compile(r"/\d+"), "/{id}"),
]

_SKIP_PATHS: frozenset[str] = frozenset({"/metrics", "/docs", "/redoc", "/openapi.json", "/favicon.ico"})


def _normalise_path(path: str) -> str:
    """Collapse path parameters to prevent cardinality explosion."""
    for pattern, replacement in _PATH_PARAM_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record HTTP request rate, error rate, and latency."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in _SKIP_PATHS:
            return await call_next(request)

        method = request.method
        normalised = _normalise_path(path)

        start = time.monotonic()
        response = await call_next(request)
        duration = time.monotonic() - start

        HTTP_REQUESTS_TOTAL.labels(method=method, path=normalised, status_code=str(response.status_code)).inc()
        HTTP_REQUEST_DURATION.labels(method=method, path=normalised).observe(duration)
        return response
