"""In-process subscription store for development and tests."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Tuple, TypeVar
from uuid import UUID

from event_delivery_service.core.exceptions import NotFoundError
from event_delivery_service.domain.enums import DeliveryStatus, SubscriptionStatus
from event_delivery_service.domain.webhooks import WebhookSubscription
from event_delivery_service.repositories.webhooks import Mutation

T = TypeVar("T")


class InMemorySubscriptionRepository:
    """Keeps serialized documents so callers never share model instances."""

    def __init__(self) -> None:
        self._documents: Dict[UUID, dict[str, Any]] = {}

    def _load(self, subscription_id: UUID) -> WebhookSubscription:
        document = self._documents.get(subscription_id)
        if document is None:
            raise NotFoundError("Webhook subscription not found")
        return WebhookSubscription.model_validate(document)

    def _store(self, subscription: WebhookSubscription) -> None:
        self._documents[subscription.id] = subscription.model_dump(mode="json")

    def _all(self) -> List[WebhookSubscription]:
        return [WebhookSubscription.model_validate(d) for d in self._documents.values()]

    async def create(self, subscription: WebhookSubscription) -> WebhookSubscription:
        self._store(subscription)
        return self._load(subscription.id)

    async def get(self, subscription_id: UUID) -> WebhookSubscription:
        return self._load(subscription_id)

    async def list(
        self,
        *,
        owner_id: UUID | None = None,
        status: SubscriptionStatus | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookSubscription], int]:
        items = [
            s
            for s in self._all()
            if (owner_id is None or s.owner_id == owner_id)
            and (status is None or s.status == status)
            and (is_active is None or s.is_active == is_active)
        ]
        items.sort(key=lambda s: s.created_at, reverse=True)
        return items[offset : offset + limit], len(items)

    async def update(self, subscription_id: UUID, mutate: Mutation[T]) -> T:
        subscription = self._load(subscription_id)
        result = mutate(subscription)
        # a delete may have landed while the mutation ran
        if subscription_id not in self._documents:
            raise NotFoundError("Webhook subscription not found")
        self._store(subscription)
        return result

    async def delete(self, subscription_id: UUID) -> None:
        if self._documents.pop(subscription_id, None) is None:
            raise NotFoundError("Webhook subscription not found")

    async def list_active_matching(
        self, event_type: str, *, owner_id: UUID | None = None
    ) -> List[WebhookSubscription]:
        items = [
            s
            for s in self._all()
            if s.is_active
            and s.status == SubscriptionStatus.ACTIVE
            and s.subscribes_to(event_type)
            and (owner_id is None or s.owner_id == owner_id)
        ]
        items.sort(key=lambda s: s.created_at)
        return items

    async def list_due_retries(self, now: datetime, *, limit: int = 50) -> List[Tuple[UUID, str]]:
        due: List[Tuple[datetime, UUID, str]] = []
        for subscription in self._all():
            if not subscription.is_active:
                continue
            for entry in subscription.event_history:
                if (
                    entry.status == DeliveryStatus.FAILED
                    and entry.next_attempt_at is not None
                    and entry.next_attempt_at <= now
                ):
                    due.append((entry.next_attempt_at, subscription.id, entry.event_id))
        due.sort(key=lambda item: item[0])
        return [(sub_id, event_id) for _, sub_id, event_id in due[:limit]]
