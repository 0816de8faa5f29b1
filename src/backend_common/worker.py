"""Periodic in-process background worker for aiohttp services.

Usage::

    async def retry_due(now: datetime) -> str | None:
        redriven = await service.redrive_due(now)
        return f"redriven={redriven}" if redriven else None

    worker = BackgroundWorker(
        name="delivery_worker",
        interval_seconds=60.0,
        tasks=[WorkerTask(name="auto_retry", fn=retry_due)],
    )
    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

# A task receives the sweep time (UTC) and may return a short summary to log.
TaskFn = Callable[[datetime], Awaitable[str | None]]


@dataclass
class WorkerTask:
    """A named periodic task executed by :class:`BackgroundWorker`."""

    name: str
    fn: TaskFn


@dataclass
class BackgroundWorker:
    """Runs a list of tasks every ``interval_seconds`` until stopped.

    Tasks are isolated from each other: one raising does not skip the rest
    of the sweep, and the loop itself survives unexpected errors.
    """

    name: str = "background_worker"
    interval_seconds: float = 60.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)

    @property
    def _app_key(self) -> str:
        return f"__worker_{self.name}__"

    async def start(self, app: web.Application) -> None:
        """``on_startup`` hook."""
        app[self._app_key] = asyncio.create_task(self._loop())

    async def stop(self, app: web.Application) -> None:
        """``on_cleanup`` hook; a no-op if the worker never started."""
        task = app.get(self._app_key)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run_once(self, now: datetime | None = None) -> dict[str, str | None]:
        """Run every task once and return ``{task_name: summary}``.

        A failing task maps to ``"error"``.
        """
        now = now or datetime.now(timezone.utc)
        results: dict[str, str | None] = {}
        for task in self.tasks:
            try:
                summary = await task.fn(now)
            except Exception:
                logger.exception("background_task_failed", worker=self.name, task=task.name)
                results[task.name] = "error"
                continue
            if summary:
                logger.info(
                    "background_task_completed",
                    worker=self.name,
                    task=task.name,
                    summary=summary,
                )
            results[task.name] = summary
        return results

    async def _loop(self) -> None:
        logger.info(
            "background_worker_started",
            worker=self.name,
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("background_worker_stopped", worker=self.name)
                raise
            except Exception:
                logger.exception("background_worker_sweep_failed", worker=self.name)
