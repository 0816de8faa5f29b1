"""Repository exports."""

from event_delivery_service.repositories.memory import InMemorySubscriptionRepository
from event_delivery_service.repositories.webhooks import (
    SubscriptionStore,
    WebhookSubscriptionRepository,
)

__all__ = [
    "InMemorySubscriptionRepository",
    "SubscriptionStore",
    "WebhookSubscriptionRepository",
]
