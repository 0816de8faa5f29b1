from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import pytest
from aiohttp import web

from event_delivery_service.main import create_app
from event_delivery_service.repositories import InMemorySubscriptionRepository
from event_delivery_service.settings import Settings
from event_delivery_service.webhooks_dispatcher import DISPATCHER_KEY


@dataclass
class ReceivedRequest:
    method: str
    path: str
    headers: dict[str, str]
    body: bytes

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


@dataclass
class Receiver:
    """Local HTTP endpoint recording what the service delivers."""

    url: str = ""
    status: int = 200
    delay: float = 0.0
    reply: Any = field(default_factory=lambda: {"received": True})
    requests: list[ReceivedRequest] = field(default_factory=list)

    async def handle(self, request: web.Request) -> web.Response:
        raw = await request.read()
        self.requests.append(
            ReceivedRequest(
                method=request.method,
                path=request.path,
                headers={k: v for k, v in request.headers.items()},
                body=raw,
            )
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        return web.json_response(self.reply, status=self.status)


@pytest.fixture
def app_settings() -> Settings:
    return Settings(
        storage_backend="memory",
        webhook_request_timeout_seconds=2.0,
        webhook_mailbox_idle_seconds=0.5,
        webhook_shutdown_drain_seconds=2.0,
    )


@pytest.fixture
def repository() -> InMemorySubscriptionRepository:
    return InMemorySubscriptionRepository()


@pytest.fixture
async def service_client(aiohttp_client, app_settings, repository):
    """Client for calling the service API over the in-memory store."""
    app = create_app(app_settings, repository=repository)
    return await aiohttp_client(app)


@pytest.fixture
def dispatcher(service_client):
    return service_client.app[DISPATCHER_KEY]


@pytest.fixture
async def receiver(aiohttp_server) -> Receiver:
    rec = Receiver()
    app = web.Application()
    app.router.add_route("*", "/hook", rec.handle)
    server = await aiohttp_server(app)
    rec.url = str(server.make_url("/hook"))
    return rec
