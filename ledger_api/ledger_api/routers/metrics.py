"""``GET /metrics`` for the Prometheus scraper (mounted at the root)."""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

router = APIRouter(tags=["metrics"])


@router.get("/metrics", include_in_schema=False)
async def scrape() -> Response:
    """Render the default registry: HTTP RED metrics plus ledger counters."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
