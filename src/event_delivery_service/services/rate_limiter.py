"""Per-subscription fixed-window rate limiting."""
from __future__ import annotations

from datetime import datetime

from event_delivery_service.domain.dto import DeliveryOutcome
from event_delivery_service.domain.enums import DeliveryStatus
from event_delivery_service.domain.webhooks import DeliveryError, WebhookSubscription

RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

WINDOW_SECONDS = 60.0


def allow(subscription: WebhookSubscription, now: datetime, *, window_seconds: float = WINDOW_SECONDS) -> bool:
    """Consume one slot of the subscription's current window.

    Mutates ``subscription.rate_limiting``; the caller persists it.
    """
    policy = subscription.rate_limiting
    if not policy.enabled:
        return True

    elapsed = (now - policy.last_reset_at).total_seconds()
    if elapsed >= window_seconds:
        policy.current_minute_requests = 1
        policy.last_reset_at = now
        return True
    if policy.current_minute_requests < policy.requests_per_minute:
        policy.current_minute_requests += 1
        return True
    return False


def rate_limited_outcome() -> DeliveryOutcome:
    """Failed outcome recorded instead of a network call."""
    return DeliveryOutcome(
        status=DeliveryStatus.FAILED,
        error=DeliveryError(message="Rate limit exceeded", code=RATE_LIMIT_EXCEEDED),
        processing_time=0,
        reached_network=False,
    )
