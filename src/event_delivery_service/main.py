"""aiohttp application entrypoint."""
from __future__ import annotations

from pathlib import Path

from aiohttp import web

from backend_common.aiohttp_app import add_cors_to_routes, add_healthcheck, create_base_app
from backend_common.db.migrations import create_migration_runner
from backend_common.db.pool import create_pool_wrappers, get_pool
from backend_common.logging_config import configure_logging

from event_delivery_service.api.router import setup_routes
from event_delivery_service.repositories import (
    InMemorySubscriptionRepository,
    SubscriptionStore,
    WebhookSubscriptionRepository,
)
from event_delivery_service.settings import Settings, settings
from event_delivery_service.webhooks_dispatcher import DISPATCHER_KEY, WebhookDispatcher
from event_delivery_service.workers import WORKER_KEY, create_worker

MIGRATION_PATHS = [
    Path(__file__).resolve().parent.parent.parent / "migrations",  # local checkout
    Path("/app/migrations"),  # container
]

# Configure structured logging
configure_logging(settings.log_level, service=settings.app_name)


def create_app(
    app_settings: Settings | None = None,
    *,
    repository: SubscriptionStore | None = None,
) -> web.Application:
    cfg = app_settings or settings

    app, cors = create_base_app(cfg)
    add_healthcheck(app, cfg)
    setup_routes(app)

    use_postgres = repository is None and cfg.storage_backend == "postgres"
    close_pool_wrapper = None
    if use_postgres:
        init_pool_wrapper, close_pool_wrapper = create_pool_wrappers(cfg)
        app.on_startup.append(init_pool_wrapper)
        app.on_startup.append(create_migration_runner(cfg, MIGRATION_PATHS))

    async def start_dispatcher(app: web.Application) -> None:
        store = repository
        if store is None:
            if use_postgres:
                store = WebhookSubscriptionRepository(await get_pool())
            else:
                store = InMemorySubscriptionRepository()
        dispatcher = WebhookDispatcher(store, settings=cfg)
        app[DISPATCHER_KEY] = dispatcher
        await dispatcher.start(app)
        if cfg.webhook_auto_retry_enabled:
            worker = create_worker(dispatcher, cfg)
            app[WORKER_KEY] = worker
            await worker.start(app)

    async def stop_dispatcher(app: web.Application) -> None:
        worker = app.get(WORKER_KEY)
        if worker is not None:
            await worker.stop(app)
        dispatcher = app.get(DISPATCHER_KEY)
        if dispatcher is not None:
            await dispatcher.stop(app)

    app.on_startup.append(start_dispatcher)
    app.on_cleanup.append(stop_dispatcher)
    if close_pool_wrapper is not None:
        app.on_cleanup.append(close_pool_wrapper)

    add_cors_to_routes(app, cors)
    return app


def main() -> None:
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
