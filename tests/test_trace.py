from __future__ import annotations

import uuid

import pytest

from backend_common.logging_config import escape_newlines_processor
from backend_common.middleware.trace import get_safe_headers


@pytest.mark.asyncio
async def test_trace_ids_are_echoed(service_client):
    trace_id = str(uuid.uuid4())
    resp = await service_client.get("/health", headers={"X-Trace-Id": trace_id})
    assert resp.headers["X-Trace-Id"] == trace_id
    assert uuid.UUID(resp.headers["X-Request-Id"])


@pytest.mark.asyncio
async def test_malformed_trace_id_is_replaced(service_client):
    resp = await service_client.get("/health", headers={"X-Trace-Id": "not-a-uuid"})
    assert resp.headers["X-Trace-Id"] != "not-a-uuid"
    assert uuid.UUID(resp.headers["X-Trace-Id"])


def test_signature_header_is_never_logged():
    safe = get_safe_headers(
        {"X-Webhook-Signature": "abc", "Authorization": "Bearer x", "X-Tenant-Id": "t"}
    )
    assert safe == {"X-Tenant-Id": "t"}


def test_log_values_stay_on_one_line():
    event = escape_newlines_processor(
        None, "info", {"event": "webhook_rejected", "body": "line1\nline2", "tags": ["a\tb"]}
    )
    assert event["body"] == "line1\\nline2"
    assert event["tags"] == ["a\\tb"]
