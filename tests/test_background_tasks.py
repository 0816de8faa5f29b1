"""Auto-retry worker wiring, using a mocked dispatcher."""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from event_delivery_service.main import create_app
from event_delivery_service.settings import Settings
from event_delivery_service.workers import WORKER_KEY, create_worker
from event_delivery_service.workers.webhook_auto_retry import webhook_auto_retry


@pytest.mark.asyncio
async def test_auto_retry_reports_redriven_count():
    now = datetime.now(timezone.utc)
    dispatcher = MagicMock()
    dispatcher.redrive_due = AsyncMock(return_value=4)

    assert await webhook_auto_retry(dispatcher, now) == "redriven=4"
    dispatcher.redrive_due.assert_awaited_once_with(now)


@pytest.mark.asyncio
async def test_auto_retry_is_silent_when_nothing_due():
    dispatcher = MagicMock()
    dispatcher.redrive_due = AsyncMock(return_value=0)

    assert await webhook_auto_retry(dispatcher, datetime.now(timezone.utc)) is None


@pytest.mark.asyncio
async def test_worker_binds_the_dispatcher():
    dispatcher = MagicMock()
    dispatcher.redrive_due = AsyncMock(return_value=1)
    worker = create_worker(dispatcher, Settings(worker_interval_seconds=5.0))

    assert worker.interval_seconds == 5.0
    assert [t.name for t in worker.tasks] == ["webhook_auto_retry"]
    assert await worker.run_once() == {"webhook_auto_retry": "redriven=1"}


@pytest.mark.asyncio
async def test_worker_starts_with_the_app_only_when_enabled(aiohttp_client, repository):
    disabled = await aiohttp_client(create_app(Settings(), repository=repository))
    assert WORKER_KEY not in disabled.app

    enabled = await aiohttp_client(
        create_app(Settings(webhook_auto_retry_enabled=True), repository=repository)
    )
    assert WORKER_KEY in enabled.app
