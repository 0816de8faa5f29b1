"""Background workers for event-delivery-service.

Each worker module exports an async task function; :func:`create_worker`
binds them to the running dispatcher as :class:`backend_common.worker.WorkerTask`
entries.
"""
from __future__ import annotations

from functools import partial

from backend_common.worker import BackgroundWorker, WorkerTask

from event_delivery_service.settings import Settings
from event_delivery_service.webhooks_dispatcher import WebhookDispatcher
from event_delivery_service.workers.webhook_auto_retry import webhook_auto_retry

WORKER_KEY = "event_delivery_worker"


def create_worker(dispatcher: WebhookDispatcher, settings: Settings) -> BackgroundWorker:
    return BackgroundWorker(
        name="event_delivery_worker",
        interval_seconds=settings.worker_interval_seconds,
        tasks=[
            WorkerTask(name="webhook_auto_retry", fn=partial(webhook_auto_retry, dispatcher)),
        ],
    )


__all__ = [
    "WORKER_KEY",
    "create_worker",
]
