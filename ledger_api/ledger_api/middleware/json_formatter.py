"""JSON log formatter.

Emits each record as one JSON object per line.  Activate with
``API_STRUCTURED_LOGGING=true``; the application then replaces the root
handlers with a ``StreamHandler`` using this formatter.

Output schema per line::

    {
        "timestamp": "2026-09-01T03:00:00.000000+00:00",
        "level": "INFO",
        "logger": "ledger_api.access",
        "message": "request completed",
        "request": { ... },     // from RequestLoggingMiddleware
        "ledger": { ... },      // from services, via extra={"ledger": ...}
        "exc_info": "Traceback ..."
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

_CONTEXT_ATTRS: tuple[str, ...] = ("request", "ledger")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for attr in _CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value is not None:
                payload[attr] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)
