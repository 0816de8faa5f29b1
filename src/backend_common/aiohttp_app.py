"""Shared aiohttp application helpers."""
from __future__ import annotations

from typing import Any, Literal, Protocol

from aiohttp import web
from aiohttp_cors import CorsConfig, ResourceOptions, setup as cors_setup

from backend_common.middleware.trace import create_trace_middleware

# aiohttp_cors wants a sequence of header names (or "*"), not a joined string.
_ALLOWED_HEADERS = (
    "Accept",
    "Accept-Language",
    "Content-Language",
    "Content-Type",
    "Authorization",
    "X-Trace-Id",
    "X-Request-Id",
    "X-Tenant-Id",
    "X-Tenant-Role",
)

_ALLOWED_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")

_EXPOSED_HEADERS = ("X-Trace-Id", "X-Request-Id")


class SettingsProtocol(Protocol):
    app_name: str
    env: Literal["development", "staging", "production"]
    cors_allowed_origins: list[str]


def create_base_app(settings: SettingsProtocol) -> tuple[web.Application, CorsConfig]:
    """Create an app with the trace middleware and CORS defaults installed."""
    app = web.Application()
    app.middlewares.append(create_trace_middleware(settings.app_name))

    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=_EXPOSED_HEADERS,
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=_ALLOWED_METHODS,
            )
            for origin in settings.cors_allowed_origins
        },
    )
    return app, cors


def add_healthcheck(app: web.Application, settings: SettingsProtocol) -> None:
    """Register ``GET /health``."""

    async def healthcheck(_request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "service": settings.app_name, "env": settings.env})

    app.router.add_get("/health", healthcheck)


def add_cors_to_routes(app: web.Application, cors: CorsConfig) -> None:
    """Apply CORS configuration to every registered route."""
    for route in list(app.router.routes()):
        cors.add(route)


async def read_json(request: web.Request) -> dict[str, Any]:
    """Parse a JSON object body, raising ``HTTPBadRequest`` otherwise."""
    try:
        data = await request.json()
    except Exception as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data
