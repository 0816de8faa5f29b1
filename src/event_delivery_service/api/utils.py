"""Helper utilities for API handlers."""
from __future__ import annotations

from enum import Enum
from typing import Any, Type, TypeVar
from uuid import UUID

from aiohttp import web

# Re-export read_json from backend_common so routes import it from one place.
from backend_common.aiohttp_app import read_json as read_json  # noqa: F401

TEnum = TypeVar("TEnum", bound=Enum)


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except (ValueError, TypeError, AttributeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def parse_enum(value: str | None, enum_cls: Type[TEnum], label: str) -> TEnum | None:
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def parse_bool(value: str | None, label: str) -> bool | None:
    if value is None or value == "":
        return None
    lowered = value.strip().lower()
    if lowered in {"true", "1", "yes"}:
        return True
    if lowered in {"false", "0", "no"}:
        return False
    raise web.HTTPBadRequest(text=f"Invalid {label}")


def pagination_params(
    request: web.Request,
    *,
    default_limit: int = 50,
    max_limit: int = 100,
) -> tuple[int, int]:
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", str(default_limit)))
        offset = int(query.get("offset", "0"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit and offset must be integers") from exc
    if limit <= 0:
        limit = default_limit
    limit = min(limit, max_limit)
    if offset < 0:
        offset = 0
    return limit, offset


def paginated_response(
    items: list[Any],
    *,
    limit: int,
    offset: int,
    key: str,
    total: int,
) -> dict[str, Any]:
    return {
        key: items,
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(items) < total,
    }
