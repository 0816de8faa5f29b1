from __future__ import annotations

import uuid

import pytest

from event_delivery_service.services.signing import sign
from tests.utils import make_headers


def _payload(url: str, **overrides):
    data = {
        "name": "Orders",
        "url": url,
        "events": ["order.created", "order.paid"],
    }
    data.update(overrides)
    return data


async def _create(client, headers, url, **overrides):
    resp = await client.post("/api/v1/webhooks", json=_payload(url, **overrides), headers=headers)
    assert resp.status == 201, await resp.text()
    return await resp.json()


@pytest.mark.asyncio
async def test_create_and_get_subscription(service_client, receiver):
    tenant_id = uuid.uuid4()
    headers = make_headers(tenant_id)

    created = await _create(service_client, headers, receiver.url)
    assert created["owner_id"] == str(tenant_id)
    assert created["owner_role"] == "admin"
    assert created["created_by"] == {"id": str(tenant_id), "role": "admin"}
    assert created["status"] == "active"
    assert created["is_active"] is True
    assert len(created["secret"]) == 64
    assert created["health_check"]["uptime_percentage"] == 100.0
    assert "event_history" not in created

    resp = await service_client.get(f"/api/v1/webhooks/{created['id']}", headers=headers)
    assert resp.status == 200
    fetched = await resp.json()
    assert fetched["secret"] == created["secret"]
    assert fetched["events"] == ["order.created", "order.paid"]


@pytest.mark.asyncio
async def test_create_keeps_supplied_secret_and_dedupes_events(service_client, receiver):
    headers = make_headers(uuid.uuid4())
    created = await _create(
        service_client,
        headers,
        receiver.url,
        secret="mine",
        events=[" order.created", "order.created", "system.*"],
    )
    assert created["secret"] == "mine"
    assert created["events"] == ["order.created", "system.*"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"events": ["order.exploded"]},
        {"events": []},
        {"url": "ftp://example.com/hook"},
        {"method": "GET"},
        {"format": "yaml"},
        {"unexpected": True},
    ],
)
async def test_create_validation_errors(service_client, receiver, overrides):
    payload = _payload(receiver.url)
    payload.update(overrides)
    resp = await service_client.post(
        "/api/v1/webhooks",
        json=payload,
        headers=make_headers(uuid.uuid4()),
    )
    assert resp.status == 400


@pytest.mark.asyncio
async def test_identity_headers_are_required(service_client):
    resp = await service_client.get("/api/v1/webhooks")
    assert resp.status == 401

    resp = await service_client.get(
        "/api/v1/webhooks", headers={"X-Tenant-Id": "nope", "X-Tenant-Role": "admin"}
    )
    assert resp.status == 400

    resp = await service_client.get("/api/v1/webhooks", headers=make_headers(uuid.uuid4(), role="viewer"))
    assert resp.status == 403


@pytest.mark.asyncio
async def test_ownership_is_enforced(service_client, receiver):
    owner = make_headers(uuid.uuid4())
    other = make_headers(uuid.uuid4())
    operator = make_headers(uuid.uuid4(), role="superadmin")
    created = await _create(service_client, owner, receiver.url)
    path = f"/api/v1/webhooks/{created['id']}"

    assert (await service_client.get(path, headers=other)).status == 403
    assert (await service_client.put(path, json={"name": "x"}, headers=other)).status == 403
    assert (await service_client.put(f"{path}/toggle", headers=other)).status == 403
    assert (await service_client.delete(path, headers=other)).status == 403
    assert (await service_client.get(f"{path}/logs", headers=other)).status == 403
    assert (await service_client.get(path, headers=operator)).status == 200


@pytest.mark.asyncio
async def test_unknown_or_malformed_id(service_client):
    headers = make_headers(uuid.uuid4(), role="superadmin")
    resp = await service_client.get(f"/api/v1/webhooks/{uuid.uuid4()}", headers=headers)
    assert resp.status == 404
    resp = await service_client.get("/api/v1/webhooks/not-a-uuid", headers=headers)
    assert resp.status == 400


@pytest.mark.asyncio
async def test_list_scoping(service_client, receiver):
    tenant_a = uuid.uuid4()
    tenant_b = uuid.uuid4()
    await _create(service_client, make_headers(tenant_a), receiver.url, name="a1")
    await _create(service_client, make_headers(tenant_a), receiver.url, name="a2", is_active=False)
    await _create(service_client, make_headers(tenant_b), receiver.url, name="b1")

    resp = await service_client.get("/api/v1/webhooks", headers=make_headers(tenant_a))
    body = await resp.json()
    assert body["total"] == 2
    assert {w["name"] for w in body["webhooks"]} == {"a1", "a2"}
    assert all("secret" not in w for w in body["webhooks"])

    resp = await service_client.get(
        "/api/v1/webhooks?is_active=false", headers=make_headers(tenant_a)
    )
    assert [w["name"] for w in (await resp.json())["webhooks"]] == ["a2"]

    operator = make_headers(uuid.uuid4(), role="superadmin")
    resp = await service_client.get("/api/v1/webhooks", headers=operator)
    assert (await resp.json())["total"] == 3
    resp = await service_client.get(f"/api/v1/webhooks?owner_id={tenant_b}", headers=operator)
    assert [w["name"] for w in (await resp.json())["webhooks"]] == ["b1"]

    resp = await service_client.get("/api/v1/webhooks?status=bogus", headers=operator)
    assert resp.status == 400


@pytest.mark.asyncio
async def test_update_toggle_and_delete(service_client, receiver):
    headers = make_headers(uuid.uuid4())
    created = await _create(service_client, headers, receiver.url)
    path = f"/api/v1/webhooks/{created['id']}"

    resp = await service_client.put(
        path,
        json={
            "name": "Renamed",
            "events": ["payment.failed"],
            "rate_limiting": {"enabled": True, "requests_per_minute": 10},
        },
        headers=headers,
    )
    assert resp.status == 200
    updated = await resp.json()
    assert updated["name"] == "Renamed"
    assert updated["events"] == ["payment.failed"]
    assert updated["rate_limiting"]["enabled"] is True
    assert updated["rate_limiting"]["requests_per_minute"] == 10
    assert updated["secret"] == created["secret"]

    resp = await service_client.put(path, json={"events": ["nope.nope"]}, headers=headers)
    assert resp.status == 400

    resp = await service_client.put(f"{path}/toggle", headers=headers)
    assert await resp.json() == {"id": created["id"], "is_active": False, "status": "inactive"}
    resp = await service_client.put(f"{path}/toggle", headers=headers)
    assert await resp.json() == {"id": created["id"], "is_active": True, "status": "active"}

    assert (await service_client.delete(path, headers=headers)).status == 204
    assert (await service_client.get(path, headers=headers)).status == 404
    assert (await service_client.delete(path, headers=headers)).status == 404


@pytest.mark.asyncio
async def test_fire_test_event(service_client, receiver):
    headers = make_headers(uuid.uuid4())
    created = await _create(service_client, headers, receiver.url, secret="abc")
    path = f"/api/v1/webhooks/{created['id']}/test"

    resp = await service_client.post(path, json={"event_type": "user.created"}, headers=headers)
    assert resp.status == 400
    # default test.event needs the wildcard
    resp = await service_client.post(path, headers=headers)
    assert resp.status == 400
    assert receiver.requests == []

    resp = await service_client.post(
        path, json={"event_type": "order.created", "payload": {"order_id": "t-1"}}, headers=headers
    )
    assert resp.status == 200
    body = await resp.json()
    assert body["result"]["status"] == "success"
    assert body["result"]["response"]["status_code"] == 200

    (received,) = receiver.requests
    assert received.json()["id"] == body["event_id"]
    assert received.json()["data"] == {"order_id": "t-1"}
    assert received.headers["X-Webhook-Signature"] == sign("abc", received.body)

    logs = await (await service_client.get(f"/api/v1/webhooks/{created['id']}/logs", headers=headers)).json()
    assert logs["events"][0]["event_id"] == body["event_id"]
    assert logs["events"][0]["attempts"] == 1


@pytest.mark.asyncio
async def test_fire_default_test_event_with_wildcard(service_client, receiver):
    headers = make_headers(uuid.uuid4())
    created = await _create(service_client, headers, receiver.url, events=["system.*"])

    resp = await service_client.post(f"/api/v1/webhooks/{created['id']}/test", headers=headers)
    assert resp.status == 200
    envelope = receiver.requests[0].json()
    assert envelope["type"] == "test.event"
    assert envelope["data"]["test"] is True


@pytest.mark.asyncio
async def test_publish_logs_and_manual_retry(service_client, dispatcher, receiver):
    headers = make_headers(uuid.uuid4())
    created = await _create(service_client, headers, receiver.url)
    base = f"/api/v1/webhooks/{created['id']}"

    receiver.status = 500
    resp = await service_client.post(
        "/api/v1/events", json={"event_type": "order.paid", "payload": {"order_id": "o-9"}}
    )
    assert resp.status == 202
    published = await resp.json()
    (ticket,) = published["deliveries"]
    assert ticket["subscription_id"] == created["id"]
    assert ticket["status"] == "queued"
    assert await dispatcher.drain(timeout=5)

    resp = await service_client.get(f"{base}/logs?status=failed", headers=headers)
    logs = await resp.json()
    assert logs["total"] == 1
    failed = logs["events"][0]
    assert failed["event_id"] == ticket["event_id"]
    assert failed["attempts"] == 1
    assert failed["error"]["code"] == "HTTP_ERROR"
    assert logs["health_check"]["consecutive_failures"] == 1

    receiver.status = 200
    resp = await service_client.post(f"{base}/retry/{ticket['event_id']}", headers=headers)
    assert resp.status == 200
    retried = await resp.json()
    assert retried["result"]["status"] == "success"
    assert retried["event"]["event_id"] == ticket["event_id"]
    assert retried["event"]["attempts"] == 2

    resp = await service_client.post(f"{base}/retry/{ticket['event_id']}", headers=headers)
    assert resp.status == 400
    resp = await service_client.post(f"{base}/retry/unknown", headers=headers)
    assert resp.status == 404

    logs = await (await service_client.get(f"{base}/logs?event_type=order.paid", headers=headers)).json()
    assert logs["total"] == 1
    assert logs["health_check"]["consecutive_failures"] == 0


@pytest.mark.asyncio
async def test_publish_validation(service_client):
    resp = await service_client.post("/api/v1/events", json={"event_type": "Not Valid"})
    assert resp.status == 400
    resp = await service_client.post("/api/v1/events", json={"payload": {}})
    assert resp.status == 400
    resp = await service_client.post("/api/v1/events", json={"event_type": "order.created"})
    assert resp.status == 202
    assert (await resp.json())["deliveries"] == []
