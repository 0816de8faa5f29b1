"""Subscriber lookup for a published event."""
from __future__ import annotations

from typing import Any, List
from uuid import UUID

import structlog

from event_delivery_service.domain.filters import matches_filter
from event_delivery_service.domain.webhooks import WebhookSubscription
from event_delivery_service.repositories.webhooks import SubscriptionStore

logger = structlog.get_logger(__name__)


async def find_subscribers(
    repository: SubscriptionStore,
    event_type: str,
    context: dict[str, Any] | None = None,
    *,
    owner_id: UUID | None = None,
) -> List[WebhookSubscription]:
    """Active subscriptions for ``event_type`` (or the wildcard) whose filter accepts ``context``.

    A subscription whose filter cannot be evaluated is skipped without
    affecting the others.
    """
    candidates = await repository.list_active_matching(event_type, owner_id=owner_id)
    matched: List[WebhookSubscription] = []
    for subscription in candidates:
        try:
            accepted = matches_filter(subscription.filter_conditions, context)
        except Exception:
            logger.exception(
                "webhook_filter_failed",
                subscription_id=str(subscription.id),
                event_type=event_type,
            )
            continue
        if accepted:
            matched.append(subscription)
    return matched
