"""Decoding of list-shaped JSON responses from external providers.

Providers return collections in several shapes.  :meth:`Page.from_payload`
is the single place that knows about them; call sites only ever see a
:class:`Page`.  Shapes are tried in this order:

1. ``{"data": [...]}``
2. ``{"data": {"items": [...]}}``
3. ``{"items": [...]}``
4. a bare JSON array
5. a bare object that is not an error envelope, treated as one item
6. anything else: an empty page
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

_ERROR_KEYS = frozenset({"errors", "error"})


def extract_items(payload: Any) -> list[dict[str, Any]]:
    """Return the list of item objects contained in *payload*."""
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        if isinstance(data, dict) and isinstance(data.get("items"), list):
            return [item for item in data["items"] if isinstance(item, dict)]
        items = payload.get("items")
        if isinstance(items, list):
            return [item for item in items if isinstance(item, dict)]
        if payload and not _ERROR_KEYS & payload.keys() and "data" not in payload:
            return [payload]
        return []
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    return []


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


class Page(BaseModel):
    """One page of items plus whatever paging hints the provider sent."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    has_more: bool = False
    total_count: int | None = None
    offset: int | None = None
    limit: int | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> Page:
        items = extract_items(payload)
        if not isinstance(payload, dict):
            return cls(items=items)
        return cls(
            items=items,
            has_more=bool(payload.get("hasMore", False)),
            total_count=_int_or_none(payload.get("totalCount")),
            offset=_int_or_none(payload.get("offset")),
            limit=_int_or_none(payload.get("limit")),
        )

    def first(self) -> dict[str, Any] | None:
        return self.items[0] if self.items else None
