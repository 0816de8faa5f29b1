"""Webhook subscription endpoints."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from aiohttp import web
from pydantic import ValidationError

from event_delivery_service.api.utils import (
    paginated_response,
    pagination_params,
    parse_bool,
    parse_enum,
    parse_uuid,
    read_json,
)
from event_delivery_service.core.exceptions import (
    EventNotRetryableError,
    ForbiddenError,
    NotFoundError,
    UnsupportedEventTypeError,
)
from event_delivery_service.domain.dto import (
    FireTestEventDTO,
    SubscriptionCreateDTO,
    SubscriptionUpdateDTO,
)
from event_delivery_service.domain.enums import DeliveryStatus, SubscriptionStatus
from event_delivery_service.domain.webhooks import WebhookSubscription
from event_delivery_service.services.dependencies import (
    get_webhook_service,
    require_current_tenant,
)

routes = web.RouteTableDef()


def _subscription_response(
    subscription: WebhookSubscription, *, include_secret: bool = True
) -> dict[str, Any]:
    exclude = {"event_history"} if include_secret else {"event_history", "secret"}
    return subscription.model_dump(mode="json", exclude=exclude)


def _webhook_id(request: web.Request) -> UUID:
    return parse_uuid(request.match_info["webhook_id"], "webhook_id")


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    tenant = await require_current_tenant(request)
    query = request.rel_url.query
    owner_raw = query.get("owner_id")
    owner_id = parse_uuid(owner_raw, "owner_id") if owner_raw else None
    status = parse_enum(query.get("status"), SubscriptionStatus, "status")
    is_active = parse_bool(query.get("is_active"), "is_active")
    limit, offset = pagination_params(request)
    service = await get_webhook_service(request)
    items, total = await service.list_subscriptions(
        tenant,
        owner_id=owner_id,
        status=status,
        is_active=is_active,
        limit=limit,
        offset=offset,
    )
    payload = paginated_response(
        [_subscription_response(item, include_secret=False) for item in items],
        limit=limit,
        offset=offset,
        key="webhooks",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    tenant = await require_current_tenant(request)
    body = await read_json(request)
    try:
        dto = SubscriptionCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_webhook_service(request)
    subscription = await service.create_subscription(tenant, dto)
    return web.json_response(_subscription_response(subscription), status=201)


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    tenant = await require_current_tenant(request)
    webhook_id = _webhook_id(request)
    service = await get_webhook_service(request)
    try:
        subscription = await service.get_subscription(tenant, webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ForbiddenError as exc:
        raise web.HTTPForbidden(text=str(exc)) from exc
    return web.json_response(_subscription_response(subscription))


@routes.put("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    tenant = await require_current_tenant(request)
    webhook_id = _webhook_id(request)
    body = await read_json(request)
    try:
        dto = SubscriptionUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_webhook_service(request)
    try:
        subscription = await service.update_subscription(tenant, webhook_id, dto)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ForbiddenError as exc:
        raise web.HTTPForbidden(text=str(exc)) from exc
    return web.json_response(_subscription_response(subscription))


@routes.put("/api/v1/webhooks/{webhook_id}/toggle")
async def toggle_webhook(request: web.Request):
    tenant = await require_current_tenant(request)
    webhook_id = _webhook_id(request)
    service = await get_webhook_service(request)
    try:
        subscription = await service.toggle_subscription(tenant, webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ForbiddenError as exc:
        raise web.HTTPForbidden(text=str(exc)) from exc
    return web.json_response(
        {
            "id": str(subscription.id),
            "is_active": subscription.is_active,
            "status": subscription.status.value,
        }
    )


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    tenant = await require_current_tenant(request)
    webhook_id = _webhook_id(request)
    service = await get_webhook_service(request)
    try:
        await service.delete_subscription(tenant, webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ForbiddenError as exc:
        raise web.HTTPForbidden(text=str(exc)) from exc
    return web.Response(status=204)


@routes.post("/api/v1/webhooks/{webhook_id}/test")
async def fire_test_event(request: web.Request):
    tenant = await require_current_tenant(request)
    webhook_id = _webhook_id(request)
    body = await read_json(request) if request.can_read_body else {}
    try:
        dto = FireTestEventDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_webhook_service(request)
    try:
        entry, outcome = await service.fire_test_event(tenant, webhook_id, dto)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ForbiddenError as exc:
        raise web.HTTPForbidden(text=str(exc)) from exc
    except UnsupportedEventTypeError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(
        {
            "event_id": entry.event_id,
            "result": outcome.model_dump(mode="json", exclude={"reached_network"}),
        }
    )


@routes.get("/api/v1/webhooks/{webhook_id}/logs")
async def get_webhook_logs(request: web.Request):
    tenant = await require_current_tenant(request)
    webhook_id = _webhook_id(request)
    query = request.rel_url.query
    status = parse_enum(query.get("status"), DeliveryStatus, "status")
    event_type = query.get("event_type") or None
    limit, _ = pagination_params(request)
    service = await get_webhook_service(request)
    try:
        events, health, total = await service.get_logs(
            tenant, webhook_id, status=status, event_type=event_type, limit=limit
        )
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ForbiddenError as exc:
        raise web.HTTPForbidden(text=str(exc)) from exc
    return web.json_response(
        {
            "events": [entry.model_dump(mode="json") for entry in events],
            "total": total,
            "health_check": health.model_dump(mode="json"),
        }
    )


@routes.post("/api/v1/webhooks/{webhook_id}/retry/{event_id}")
async def retry_webhook_event(request: web.Request):
    tenant = await require_current_tenant(request)
    webhook_id = _webhook_id(request)
    event_id = request.match_info["event_id"]
    service = await get_webhook_service(request)
    try:
        entry, outcome = await service.retry_event(tenant, webhook_id, event_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ForbiddenError as exc:
        raise web.HTTPForbidden(text=str(exc)) from exc
    except EventNotRetryableError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(
        {
            "event": entry.model_dump(mode="json"),
            "result": outcome.model_dump(mode="json", exclude={"reached_network"}),
        }
    )
