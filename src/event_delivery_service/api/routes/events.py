"""Internal event publishing endpoint used by collaborating services."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from event_delivery_service.api.utils import read_json
from event_delivery_service.core.exceptions import InvalidEventTypeError
from event_delivery_service.domain.dto import PublishEventDTO
from event_delivery_service.services.dependencies import get_webhook_service

routes = web.RouteTableDef()


@routes.post("/api/v1/events")
async def publish_event(request: web.Request):
    body = await read_json(request)
    try:
        dto = PublishEventDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_webhook_service(request)
    try:
        tickets = await service.publish(dto)
    except InvalidEventTypeError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(
        {
            "event_type": dto.event_type,
            "deliveries": [ticket.model_dump(mode="json") for ticket in tickets],
        },
        status=202,
    )
