"""Webhook subscription repositories.

A subscription is stored as one document (configuration, health and the
bounded event history together). Indexed columns mirror the fields used for
lookups so the document never has to be scanned for matching.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable, List, Protocol, Tuple, TypeVar
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from event_delivery_service.core.exceptions import NotFoundError
from event_delivery_service.domain.enums import DeliveryStatus, SubscriptionStatus
from event_delivery_service.domain.webhooks import WILDCARD_EVENT, WebhookSubscription
from event_delivery_service.repositories.base import BaseRepository

T = TypeVar("T")

Mutation = Callable[[WebhookSubscription], T]


class SubscriptionStore(Protocol):
    async def create(self, subscription: WebhookSubscription) -> WebhookSubscription: ...

    async def get(self, subscription_id: UUID) -> WebhookSubscription: ...

    async def list(
        self,
        *,
        owner_id: UUID | None = None,
        status: SubscriptionStatus | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookSubscription], int]: ...

    async def update(self, subscription_id: UUID, mutate: Mutation[T]) -> T: ...

    async def delete(self, subscription_id: UUID) -> None: ...

    async def list_active_matching(
        self, event_type: str, *, owner_id: UUID | None = None
    ) -> List[WebhookSubscription]: ...

    async def list_due_retries(self, now: datetime, *, limit: int = 50) -> List[Tuple[UUID, str]]: ...


class WebhookSubscriptionRepository(BaseRepository):
    """PostgreSQL store keeping each subscription as a JSONB document."""

    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> WebhookSubscription:
        document = record["document"]
        if isinstance(document, str):
            document = json.loads(document)
        return WebhookSubscription.model_validate(document)

    @staticmethod
    def _columns(subscription: WebhookSubscription) -> tuple[Any, ...]:
        return (
            subscription.id,
            subscription.owner_id,
            subscription.is_active,
            subscription.status.value,
            subscription.events,
            subscription.model_dump_json(),
            subscription.created_at,
            subscription.updated_at,
        )

    async def create(self, subscription: WebhookSubscription) -> WebhookSubscription:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_subscriptions (
                id, owner_id, is_active, status, events, document, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5::text[], $6::jsonb, $7, $8)
            RETURNING document
            """,
            *self._columns(subscription),
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, subscription_id: UUID) -> WebhookSubscription:
        record = await self._fetchrow(
            "SELECT document FROM webhook_subscriptions WHERE id = $1",
            subscription_id,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")
        return self._to_model(record)

    async def list(
        self,
        *,
        owner_id: UUID | None = None,
        status: SubscriptionStatus | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookSubscription], int]:
        records = await self._fetch(
            """
            SELECT document,
                   COUNT(*) OVER() AS total_count
            FROM webhook_subscriptions
            WHERE ($1::uuid IS NULL OR owner_id = $1)
              AND ($2::text IS NULL OR status = $2)
              AND ($3::boolean IS NULL OR is_active = $3)
            ORDER BY created_at DESC
            LIMIT $4 OFFSET $5
            """,
            owner_id,
            status.value if status is not None else None,
            is_active,
            limit,
            offset,
        )
        items: List[WebhookSubscription] = []
        total: int | None = None
        for rec in records:
            total = int(rec["total_count"])
            items.append(self._to_model(rec))
        if total is None:
            total = await self._count(owner_id, status, is_active)
        return items, total

    async def _count(
        self,
        owner_id: UUID | None,
        status: SubscriptionStatus | None,
        is_active: bool | None,
    ) -> int:
        record = await self._fetchrow(
            """
            SELECT COUNT(*) AS total
            FROM webhook_subscriptions
            WHERE ($1::uuid IS NULL OR owner_id = $1)
              AND ($2::text IS NULL OR status = $2)
              AND ($3::boolean IS NULL OR is_active = $3)
            """,
            owner_id,
            status.value if status is not None else None,
            is_active,
        )
        return int(record["total"]) if record else 0

    async def update(self, subscription_id: UUID, mutate: Mutation[T]) -> T:
        """Apply ``mutate`` to the stored document under a row lock."""
        async with self._connection() as conn:
            async with conn.transaction():
                record = await conn.fetchrow(
                    "SELECT document FROM webhook_subscriptions WHERE id = $1 FOR UPDATE",
                    subscription_id,
                )
                if record is None:
                    raise NotFoundError("Webhook subscription not found")
                subscription = self._to_model(record)
                result = mutate(subscription)
                columns = self._columns(subscription)
                await conn.execute(
                    """
                    UPDATE webhook_subscriptions
                    SET is_active = $2,
                        status = $3,
                        events = $4::text[],
                        document = $5::jsonb,
                        updated_at = $6
                    WHERE id = $1
                    """,
                    subscription_id,
                    columns[2],
                    columns[3],
                    columns[4],
                    columns[5],
                    columns[7],
                )
                return result

    async def delete(self, subscription_id: UUID) -> None:
        record = await self._fetchrow(
            "DELETE FROM webhook_subscriptions WHERE id = $1 RETURNING id",
            subscription_id,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")

    async def list_active_matching(
        self, event_type: str, *, owner_id: UUID | None = None
    ) -> List[WebhookSubscription]:
        records = await self._fetch(
            """
            SELECT document
            FROM webhook_subscriptions
            WHERE is_active = true
              AND status = $1
              AND ($2 = ANY(events) OR $3 = ANY(events))
              AND ($4::uuid IS NULL OR owner_id = $4)
            ORDER BY created_at ASC
            """,
            SubscriptionStatus.ACTIVE.value,
            event_type,
            WILDCARD_EVENT,
            owner_id,
        )
        return [self._to_model(r) for r in records]

    async def list_due_retries(self, now: datetime, *, limit: int = 50) -> List[Tuple[UUID, str]]:
        records = await self._fetch(
            """
            SELECT s.id, e->>'event_id' AS event_id
            FROM webhook_subscriptions s,
                 jsonb_array_elements(s.document->'event_history') AS e
            WHERE s.is_active = true
              AND e->>'status' = $1
              AND e->>'next_attempt_at' IS NOT NULL
              AND (e->>'next_attempt_at')::timestamptz <= $2
            ORDER BY (e->>'next_attempt_at')::timestamptz ASC
            LIMIT $3
            """,
            DeliveryStatus.FAILED.value,
            now,
            limit,
        )
        return [(r["id"], r["event_id"]) for r in records]
