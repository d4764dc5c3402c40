"""HTTP client for the usage metering provider.

The provider reports how many credits a team's agent spent in a calendar
month.  Every failure is surfaced as :class:`MeteringUnavailableError`;
deciding whether to degrade is left to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from ledger_core.errors import MeteringUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeteringReading:
    """Credits consumed in one period, plus the raw provider body."""

    total: int
    payload: dict[str, Any] = field(default_factory=dict)


def _coerce_total(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError("boolean total")
    return int(value)


class MeteringClient:
    """Thin async wrapper around the metering provider REST API.

    Parameters
    ----------
    base_url:
        Root URL of the provider API.
    api_token:
        Bearer token sent on every request.
    timeout:
        Per-request timeout in seconds.
    client:
        Pre-built ``httpx.AsyncClient``; tests pass one wired to a
        ``MockTransport``.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        headers: dict[str, str] = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
            headers=headers,
        )

    async def credits_spent(self, agent_id: str, year: int, month: int) -> MeteringReading:
        """Return credits consumed by *agent_id* in *year*/*month*.

        A body without ``total`` means the provider has no record for the
        period and reads as zero.

        Raises
        ------
        MeteringUnavailableError
            On transport errors, any non-2xx status, or an unparseable body.
        """
        path = f"/agent/{agent_id}/credits-spent"
        try:
            response = await self._client.get(path, params={"year": year, "month": month})
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Metering provider returned %d for agent=%s: %s",
                exc.response.status_code,
                agent_id,
                exc.response.text[:500],
            )
            raise MeteringUnavailableError(
                f"Metering provider returned HTTP {exc.response.status_code}",
                agent_id=agent_id,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("Metering request for agent=%s failed: %s", agent_id, exc)
            raise MeteringUnavailableError(
                "Metering provider is unreachable",
                agent_id=agent_id,
            ) from exc
        except ValueError as exc:
            raise MeteringUnavailableError("Metering provider returned invalid JSON", agent_id=agent_id) from exc

        if not isinstance(body, dict):
            raise MeteringUnavailableError("Metering provider returned an unexpected body", agent_id=agent_id)
        try:
            total = _coerce_total(body.get("total"))
        except (TypeError, ValueError) as exc:
            raise MeteringUnavailableError(
                f"Metering provider returned a non-numeric total: {body.get('total')!r}",
                agent_id=agent_id,
            ) from exc

        logger.debug("Metering agent=%s period=%04d-%02d total=%d", agent_id, year, month, total)
        return MeteringReading(total=total, payload=body)

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()
