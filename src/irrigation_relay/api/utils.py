"""API utilities."""
from __future__ import annotations

from aiohttp import web


def parse_limit(raw: str | None, *, maximum: int) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit must be an integer") from exc
    if value < 0:
        raise web.HTTPBadRequest(text="limit must be >= 0")
    return min(value, maximum)
