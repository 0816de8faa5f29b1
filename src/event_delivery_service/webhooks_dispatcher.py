"""Event fan-out and background webhook delivery.

``publish`` records one pending attempt per matching subscription and
returns immediately; each delivery then runs as a tracked background task.
All record changes go through :class:`SubscriptionMailbox`, the HTTP call
itself runs outside it.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from functools import partial
from typing import Any, List, Set, Tuple
from uuid import UUID

import structlog
from aiohttp import ClientSession, ClientTimeout, web

from event_delivery_service.core.exceptions import (
    EventNotFoundError,
    EventNotRetryableError,
    NotFoundError,
)
from event_delivery_service.domain.dto import DeliveryOutcome, PublishTicket
from event_delivery_service.domain.enums import DeliveryStatus
from event_delivery_service.domain.webhooks import (
    DeliveryAttempt,
    RetryConfig,
    WebhookSubscription,
    utcnow,
    validate_event_type,
)
from event_delivery_service.repositories.webhooks import Mutation, SubscriptionStore
from event_delivery_service.services import rate_limiter
from event_delivery_service.services.delivery import DeliveryEngine
from event_delivery_service.services.history import apply_outcome, record_attempt
from event_delivery_service.services.mailbox import SubscriptionMailbox
from event_delivery_service.services.matcher import find_subscribers
from event_delivery_service.settings import Settings, settings as default_settings

logger = structlog.get_logger(__name__)

DISPATCHER_KEY = "webhook_dispatcher"


def _backoff_seconds(config: RetryConfig, attempt: int) -> int:
    # attempt is 1-based
    if not config.retry_backoff:
        return min(config.retry_interval, config.retry_wait)
    return min(config.retry_wait, config.retry_interval * 2 ** min(attempt - 1, 20))


class WebhookDispatcher:
    def __init__(
        self,
        repository: SubscriptionStore,
        *,
        settings: Settings | None = None,
        engine: DeliveryEngine | None = None,
    ):
        self._settings = settings or default_settings
        self._repository = repository
        self._mailbox = SubscriptionMailbox(
            repository, idle_seconds=self._settings.webhook_mailbox_idle_seconds
        )
        self._engine = engine
        self._session: ClientSession | None = None
        self._tasks: Set[asyncio.Task[None]] = set()

    @property
    def repository(self) -> SubscriptionStore:
        return self._repository

    @property
    def engine(self) -> DeliveryEngine:
        if self._engine is None:
            raise RuntimeError("Webhook dispatcher not started")
        return self._engine

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def start(self, _app: web.Application | None = None) -> None:
        if self._engine is not None:
            return
        timeout = ClientTimeout(total=self._settings.webhook_request_timeout_seconds)
        self._session = ClientSession(timeout=timeout)
        self._engine = DeliveryEngine(
            self._session,
            timeout_s=self._settings.webhook_request_timeout_seconds,
            user_agent=self._settings.webhook_user_agent,
        )
        logger.info("webhook_dispatcher_started")

    async def stop(self, _app: web.Application | None = None) -> None:
        drained = await self.drain(timeout=self._settings.webhook_shutdown_drain_seconds)
        if not drained:
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._mailbox.close()
        if self._session is not None:
            await self._session.close()
            self._session = None
            self._engine = None
        logger.info("webhook_dispatcher_stopped", drained=drained)

    async def mutate(self, subscription_id: UUID, fn: Mutation[Any]) -> Any:
        """Serialized read-modify-write of one subscription record."""
        return await self._mailbox.submit(subscription_id, fn)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight deliveries; ``False`` if ``timeout`` expired first."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                logger.warning("webhook_drain_timeout", pending=len(self._tasks))
                return False
            await asyncio.wait(set(self._tasks), timeout=remaining)
        return True

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Jobs below run inside the mailbox against a freshly loaded record.

    def _enqueue_job(
        self, attempt: DeliveryAttempt, now: datetime, subscription: WebhookSubscription
    ) -> Tuple[bool, WebhookSubscription]:
        record_attempt(subscription, attempt, limit=self._settings.webhook_history_limit)
        allowed = rate_limiter.allow(
            subscription, now, window_seconds=self._settings.webhook_rate_limit_window_seconds
        )
        subscription.updated_at = now
        return allowed, subscription

    def _record_job(
        self, attempt: DeliveryAttempt, subscription: WebhookSubscription
    ) -> WebhookSubscription:
        record_attempt(subscription, attempt, limit=self._settings.webhook_history_limit)
        subscription.updated_at = utcnow()
        return subscription

    def _claim_job(
        self, event_id: str, subscription: WebhookSubscription
    ) -> Tuple[WebhookSubscription, DeliveryAttempt]:
        entry = subscription.find_event(event_id)
        if entry is None:
            raise EventNotFoundError(f"Event with ID {event_id} not found")
        if entry.status != DeliveryStatus.FAILED:
            raise EventNotRetryableError("Only failed events can be retried")
        entry.status = DeliveryStatus.RETRYING
        entry.next_attempt_at = None
        return subscription, entry.model_copy(deep=True)

    def _apply_job(
        self, event_id: str, outcome: DeliveryOutcome, subscription: WebhookSubscription
    ) -> DeliveryAttempt:
        now = utcnow()
        entry = subscription.find_event(event_id)
        next_attempt_at = None
        if entry is not None:
            next_attempt_at = self._next_attempt_at(subscription.retry_config, entry, outcome, now)
        updated = apply_outcome(
            subscription,
            event_id,
            outcome,
            now=now,
            next_attempt_at=next_attempt_at,
            failure_threshold=self._settings.webhook_failure_threshold,
            limit=self._settings.webhook_history_limit,
        )
        return updated.model_copy(deep=True)

    def _next_attempt_at(
        self,
        config: RetryConfig,
        entry: DeliveryAttempt,
        outcome: DeliveryOutcome,
        now: datetime,
    ) -> datetime | None:
        if not self._settings.webhook_auto_retry_enabled or outcome.success:
            return None
        attempt = entry.attempts + (1 if outcome.reached_network else 0)
        if attempt > config.max_retries:
            return None
        return now + timedelta(seconds=_backoff_seconds(config, max(attempt, 1)))

    async def publish(
        self,
        event_type: str,
        payload: Any,
        context: dict[str, Any] | None = None,
        *,
        owner_id: UUID | None = None,
    ) -> List[PublishTicket]:
        """Record and schedule delivery to every matching subscription.

        Only an invalid ``event_type`` raises; a failure for one subscriber
        becomes an ``error`` ticket and the rest proceed.
        """
        validate_event_type(event_type)
        subscriptions = await find_subscribers(
            self._repository, event_type, context, owner_id=owner_id
        )
        tickets: List[PublishTicket] = []
        for subscription in subscriptions:
            attempt = DeliveryAttempt(event_type=event_type, payload=payload)
            try:
                allowed, snapshot = await self._mailbox.submit(
                    subscription.id, partial(self._enqueue_job, attempt, utcnow())
                )
            except Exception as exc:
                logger.exception(
                    "webhook_enqueue_failed",
                    subscription_id=str(subscription.id),
                    event_type=event_type,
                )
                tickets.append(
                    PublishTicket(subscription_id=subscription.id, status="error", error=str(exc))
                )
                continue
            self._spawn(self._process(snapshot, attempt, allowed))
            tickets.append(PublishTicket(subscription_id=subscription.id, event_id=attempt.event_id))
        logger.info("event_published", event_type=event_type, matched=len(subscriptions))
        return tickets

    async def _process(
        self, subscription: WebhookSubscription, attempt: DeliveryAttempt, allowed: bool
    ) -> None:
        log = logger.bind(subscription_id=str(subscription.id), event_id=attempt.event_id)
        try:
            if allowed:
                outcome = await self.engine.deliver(subscription, attempt)
            else:
                log.warning("webhook_rate_limited", event_type=attempt.event_type)
                outcome = rate_limiter.rate_limited_outcome()
            await self._mailbox.submit(
                subscription.id, partial(self._apply_job, attempt.event_id, outcome)
            )
        except NotFoundError:
            log.warning("webhook_outcome_dropped", reason="subscription or event no longer stored")
        except Exception:
            log.exception("webhook_process_failed")

    async def fire(
        self, subscription_id: UUID, attempt: DeliveryAttempt
    ) -> Tuple[DeliveryAttempt, DeliveryOutcome]:
        """Record ``attempt`` and deliver it inline, bypassing the rate limit."""
        snapshot = await self._mailbox.submit(subscription_id, partial(self._record_job, attempt))
        outcome = await self.engine.deliver(snapshot, attempt)
        entry = await self._mailbox.submit(
            subscription_id, partial(self._apply_job, attempt.event_id, outcome)
        )
        return entry, outcome

    async def redeliver(
        self, subscription_id: UUID, event_id: str
    ) -> Tuple[DeliveryAttempt, DeliveryOutcome]:
        """Deliver a ``failed`` history entry again, in place."""
        snapshot, entry = await self._mailbox.submit(
            subscription_id, partial(self._claim_job, event_id)
        )
        outcome = await self.engine.deliver(snapshot, entry)
        updated = await self._mailbox.submit(
            subscription_id, partial(self._apply_job, event_id, outcome)
        )
        logger.info(
            "webhook_redelivered",
            subscription_id=str(subscription_id),
            event_id=event_id,
            status=outcome.status.value,
            attempts=updated.attempts,
        )
        return updated, outcome

    async def redrive_due(self, now: datetime | None = None) -> int:
        """Re-deliver failed entries whose ``next_attempt_at`` has passed."""
        due = await self._repository.list_due_retries(
            now or utcnow(), limit=self._settings.webhook_auto_retry_batch_size
        )

        async def _one(subscription_id: UUID, event_id: str) -> bool:
            try:
                await self.redeliver(subscription_id, event_id)
            except (NotFoundError, EventNotRetryableError):
                return False
            return True

        results = await asyncio.gather(*(_one(s, e) for s, e in due))
        return sum(1 for ok in results if ok)
