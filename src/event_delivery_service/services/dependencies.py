"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from uuid import UUID

from aiohttp import web

from event_delivery_service.domain.dto import TenantContext
from event_delivery_service.domain.enums import TenantRole
from event_delivery_service.services.webhooks import WebhookService
from event_delivery_service.webhooks_dispatcher import DISPATCHER_KEY, WebhookDispatcher

_WEBHOOK_SERVICE_KEY = "webhook_service"

TENANT_ID_HEADER = "X-Tenant-Id"
TENANT_ROLE_HEADER = "X-Tenant-Role"


async def require_current_tenant(request: web.Request) -> TenantContext:
    """Identity forwarded by the API gateway in trusted headers."""
    tenant_header = request.headers.get(TENANT_ID_HEADER)
    role_header = request.headers.get(TENANT_ROLE_HEADER)
    if tenant_header is None or role_header is None:
        raise web.HTTPUnauthorized(
            reason=f"Headers {TENANT_ID_HEADER} and {TENANT_ROLE_HEADER} are required"
        )
    try:
        tenant_id = UUID(tenant_header)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {TENANT_ID_HEADER}") from exc
    try:
        role = TenantRole(role_header.strip().lower())
    except ValueError as exc:
        raise web.HTTPForbidden(reason="Role is not allowed to manage webhooks") from exc
    return TenantContext(tenant_id=tenant_id, role=role)


def get_dispatcher(request: web.Request) -> WebhookDispatcher:
    return request.app[DISPATCHER_KEY]


async def get_webhook_service(request: web.Request) -> WebhookService:
    service = request.get(_WEBHOOK_SERVICE_KEY)
    if service is None:
        service = WebhookService(get_dispatcher(request))
        request[_WEBHOOK_SERVICE_KEY] = service
    return service
