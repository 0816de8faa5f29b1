"""Per-subscription serialization of read-modify-write jobs.

Every change to a subscription record (recording an attempt, reserving a
rate-limit slot, merging an outcome, management edits) is submitted here.
Jobs for one subscription run strictly one after another on a dedicated
consumer task; jobs for different subscriptions run concurrently. Jobs are
plain functions over a freshly loaded record; the store persists the record
after the job returns, so network I/O never happens inside a job.
"""
from __future__ import annotations

import asyncio
import contextvars
from typing import Any, Dict, Tuple, TypeVar
from uuid import UUID

import structlog

from event_delivery_service.repositories.webhooks import Mutation, SubscriptionStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_Job = Tuple[Mutation[Any], "asyncio.Future[Any]"]


class SubscriptionMailbox:
    def __init__(self, repository: SubscriptionStore, *, idle_seconds: float = 30.0):
        self._repository = repository
        self._idle_seconds = idle_seconds
        self._queues: Dict[UUID, asyncio.Queue[_Job]] = {}
        self._consumers: Dict[UUID, asyncio.Task[None]] = {}

    @property
    def active_count(self) -> int:
        return len(self._consumers)

    async def submit(self, subscription_id: UUID, mutate: Mutation[T]) -> T:
        """Run ``mutate`` against the stored record and return its result.

        Exceptions raised by the job or the store propagate to the caller;
        nothing is persisted in that case.
        """
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        queue = self._queues.get(subscription_id)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[subscription_id] = queue
            self._consumers[subscription_id] = asyncio.create_task(
                self._consume(subscription_id, queue),
                name=f"mailbox-{subscription_id}",
                # consumers outlive the request that started them
                context=contextvars.Context(),
            )
        queue.put_nowait((mutate, future))
        return await future

    async def _consume(self, subscription_id: UUID, queue: asyncio.Queue[_Job]) -> None:
        while True:
            try:
                mutate, future = await asyncio.wait_for(queue.get(), timeout=self._idle_seconds)
            except asyncio.TimeoutError:
                # no await between the check and the removal, so submit() cannot race it
                if queue.empty():
                    self._queues.pop(subscription_id, None)
                    self._consumers.pop(subscription_id, None)
                    return
                continue

            if future.cancelled():
                continue
            try:
                result = await self._repository.update(subscription_id, mutate)
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)

    async def close(self) -> None:
        """Stop every consumer; queued jobs are cancelled."""
        consumers = list(self._consumers.values())
        for task in consumers:
            task.cancel()
        for task in consumers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        for queue in self._queues.values():
            while not queue.empty():
                _, future = queue.get_nowait()
                if not future.done():
                    future.cancel()
        self._queues.clear()
        self._consumers.clear()
        if consumers:
            logger.info("mailbox_closed", consumers=len(consumers))
