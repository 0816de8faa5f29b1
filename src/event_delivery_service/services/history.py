"""Bounded delivery history and rolling health statistics.

Both functions mutate the subscription in place; persisting the record (and
serializing concurrent updates to it) is the caller's job.
"""
from __future__ import annotations

from datetime import datetime

from event_delivery_service.core.exceptions import EventNotFoundError
from event_delivery_service.domain.dto import DeliveryOutcome
from event_delivery_service.domain.enums import DeliveryStatus, SubscriptionStatus
from event_delivery_service.domain.webhooks import (
    HISTORY_LIMIT,
    DeliveryAttempt,
    WebhookSubscription,
)

FAILURE_THRESHOLD = 5


def record_attempt(
    subscription: WebhookSubscription,
    attempt: DeliveryAttempt,
    *,
    limit: int = HISTORY_LIMIT,
) -> None:
    """Insert ``attempt`` as the newest entry, evicting the oldest beyond ``limit``."""
    subscription.event_history.insert(0, attempt)
    if len(subscription.event_history) > limit:
        del subscription.event_history[limit:]


def uptime_percentage(subscription: WebhookSubscription, *, limit: int = HISTORY_LIMIT) -> float:
    window = subscription.event_history[:limit]
    if not window:
        return subscription.health_check.uptime_percentage
    successes = sum(1 for entry in window if entry.status == DeliveryStatus.SUCCESS)
    return successes / len(window) * 100


def apply_outcome(
    subscription: WebhookSubscription,
    event_id: str,
    outcome: DeliveryOutcome,
    *,
    now: datetime,
    next_attempt_at: datetime | None = None,
    failure_threshold: int = FAILURE_THRESHOLD,
    limit: int = HISTORY_LIMIT,
) -> DeliveryAttempt:
    """Merge ``outcome`` into the history entry ``event_id`` and update health.

    The attempt counter grows only when the outcome reached the network.
    Reaching ``failure_threshold`` consecutive failures demotes the
    subscription to ``failing``; nothing promotes it back.
    """
    entry = subscription.find_event(event_id)
    if entry is None:
        raise EventNotFoundError(f"Event with ID {event_id} not found")

    entry.status = outcome.status
    entry.response = outcome.response
    entry.error = outcome.error
    entry.processing_time = outcome.processing_time
    entry.next_attempt_at = next_attempt_at
    if outcome.reached_network:
        entry.attempts += 1
        entry.last_attempt_at = now

    health = subscription.health_check
    if outcome.status == DeliveryStatus.SUCCESS:
        health.last_success = now
        health.consecutive_failures = 0
    elif outcome.status == DeliveryStatus.FAILED:
        health.last_failure = now
        health.consecutive_failures += 1
        if health.consecutive_failures >= failure_threshold:
            subscription.status = SubscriptionStatus.FAILING

    health.uptime_percentage = uptime_percentage(subscription, limit=limit)
    subscription.updated_at = now
    return entry
