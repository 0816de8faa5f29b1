"""Middleware binding trace/request ids to the structlog context."""
from __future__ import annotations

import time
from typing import Any, Mapping
from uuid import UUID, uuid4

import structlog
from aiohttp import web

TRACE_ID_HEADER = "X-Trace-Id"
REQUEST_ID_HEADER = "X-Request-Id"
TENANT_ID_HEADER = "X-Tenant-Id"

logger = structlog.get_logger(__name__)

# Never logged
SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "x-auth-token",
        "x-webhook-signature",
    }
)


def is_valid_uuid(value: str) -> bool:
    try:
        UUID(value)
        return True
    except (ValueError, AttributeError, TypeError):
        return False


def get_safe_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    """Copy ``headers`` without the sensitive ones."""
    return {key: value for key, value in headers.items() if key.lower() not in SENSITIVE_HEADERS}


def _incoming_id(request: web.Request, header: str) -> str:
    value = request.headers.get(header)
    if not value or not is_valid_uuid(value):
        return str(uuid4())
    return value


def create_trace_middleware(service_name: str):
    """Create the trace middleware for ``service_name``."""

    @web.middleware
    async def trace_middleware(request: web.Request, handler):
        started = time.perf_counter()
        trace_id = _incoming_id(request, TRACE_ID_HEADER)
        request_id = _incoming_id(request, REQUEST_ID_HEADER)
        request["trace_id"] = trace_id
        request["request_id"] = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=trace_id,
            request_id=request_id,
            service=service_name,
            method=request.method,
            path=request.path,
        )
        tenant_id = request.headers.get(TENANT_ID_HEADER)
        if tenant_id:
            structlog.contextvars.bind_contextvars(tenant_id=tenant_id)

        logger.info(
            "request_started",
            query_string=request.query_string or None,
            remote=request.remote,
            content_length=request.content_length,
            headers=get_safe_headers(request.headers),
        )

        try:
            response = await handler(request)
        except web.HTTPException as exc:
            logger.warning(
                "request_rejected",
                status_code=exc.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                reason=exc.reason,
            )
            raise
        except Exception:
            logger.exception(
                "request_failed",
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise
        else:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            if response.status >= 400:
                logger.warning("request_completed", status_code=response.status, duration_ms=duration_ms)
            else:
                logger.info("request_completed", status_code=response.status, duration_ms=duration_ms)
            response.headers[TRACE_ID_HEADER] = trace_id
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    return trace_middleware
