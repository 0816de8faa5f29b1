"""Webhook domain service (subscription management, test fire, logs, retry)."""
from __future__ import annotations

from typing import Any, List, Tuple
from uuid import UUID, uuid4

import structlog

from event_delivery_service.core.exceptions import ForbiddenError, UnsupportedEventTypeError
from event_delivery_service.domain.dto import (
    DeliveryOutcome,
    FireTestEventDTO,
    PublishEventDTO,
    PublishTicket,
    SubscriptionCreateDTO,
    SubscriptionUpdateDTO,
    TenantContext,
)
from event_delivery_service.domain.enums import (
    CreatorRole,
    DeliveryStatus,
    SubscriptionStatus,
    TenantRole,
)
from event_delivery_service.domain.webhooks import (
    CreatedBy,
    DeliveryAttempt,
    HealthCheck,
    RateLimiting,
    WebhookSubscription,
    new_secret,
    utcnow,
)
from event_delivery_service.webhooks_dispatcher import WebhookDispatcher

logger = structlog.get_logger(__name__)

DEFAULT_TEST_EVENT = "test.event"

_NULLABLE_FIELDS = frozenset({"description", "filter_conditions"})


def ensure_owner(tenant: TenantContext, subscription: WebhookSubscription) -> None:
    """Superadmins manage everything; admins only what they own."""
    if tenant.is_platform_operator:
        return
    if subscription.owner_role != TenantRole.ADMIN or subscription.owner_id != tenant.tenant_id:
        raise ForbiddenError("Not authorized to manage this webhook")


class WebhookService:
    def __init__(self, dispatcher: WebhookDispatcher):
        self._dispatcher = dispatcher
        self._repository = dispatcher.repository

    async def create_subscription(
        self, tenant: TenantContext, data: SubscriptionCreateDTO
    ) -> WebhookSubscription:
        now = utcnow()
        subscription = WebhookSubscription(
            id=uuid4(),
            owner_id=tenant.tenant_id,
            owner_role=tenant.role,
            created_by=CreatedBy(id=tenant.tenant_id, role=CreatorRole(tenant.role.value)),
            name=data.name,
            description=data.description,
            url=data.url,
            method=data.method,
            format=data.format,
            headers=data.headers,
            version=data.version,
            secret=data.secret or new_secret(),
            events=data.events,
            filter_conditions=data.filter_conditions,
            is_active=data.is_active,
            status=SubscriptionStatus.ACTIVE if data.is_active else SubscriptionStatus.INACTIVE,
            retry_config=data.retry_config,
            rate_limiting=RateLimiting(
                enabled=data.rate_limiting.enabled,
                requests_per_minute=data.rate_limiting.requests_per_minute,
                last_reset_at=now,
            ),
            health_check=HealthCheck(),
            tags=data.tags,
            created_at=now,
            updated_at=now,
        )
        created = await self._repository.create(subscription)
        logger.info(
            "webhook_subscription_created",
            subscription_id=str(created.id),
            events=created.events,
        )
        return created

    async def get_subscription(self, tenant: TenantContext, subscription_id: UUID) -> WebhookSubscription:
        subscription = await self._repository.get(subscription_id)
        ensure_owner(tenant, subscription)
        return subscription

    async def list_subscriptions(
        self,
        tenant: TenantContext,
        *,
        owner_id: UUID | None = None,
        status: SubscriptionStatus | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookSubscription], int]:
        if not tenant.is_platform_operator:
            owner_id = tenant.tenant_id
        return await self._repository.list(
            owner_id=owner_id,
            status=status,
            is_active=is_active,
            limit=limit,
            offset=offset,
        )

    async def update_subscription(
        self,
        tenant: TenantContext,
        subscription_id: UUID,
        data: SubscriptionUpdateDTO,
    ) -> WebhookSubscription:
        changes = data.model_dump(exclude_unset=True)

        def _update(subscription: WebhookSubscription) -> WebhookSubscription:
            ensure_owner(tenant, subscription)
            for field in changes:
                value = getattr(data, field)
                if value is None and field not in _NULLABLE_FIELDS:
                    continue
                if field == "rate_limiting":
                    # keep the live window counters
                    subscription.rate_limiting.enabled = value.enabled
                    subscription.rate_limiting.requests_per_minute = value.requests_per_minute
                    continue
                setattr(subscription, field, value)
            subscription.updated_at = utcnow()
            return subscription

        updated = await self._dispatcher.mutate(subscription_id, _update)
        logger.info(
            "webhook_subscription_updated",
            subscription_id=str(subscription_id),
            fields=sorted(changes),
        )
        return updated

    async def toggle_subscription(self, tenant: TenantContext, subscription_id: UUID) -> WebhookSubscription:
        def _toggle(subscription: WebhookSubscription) -> WebhookSubscription:
            ensure_owner(tenant, subscription)
            subscription.is_active = not subscription.is_active
            subscription.status = (
                SubscriptionStatus.ACTIVE if subscription.is_active else SubscriptionStatus.INACTIVE
            )
            subscription.updated_at = utcnow()
            return subscription

        toggled = await self._dispatcher.mutate(subscription_id, _toggle)
        logger.info(
            "webhook_subscription_toggled",
            subscription_id=str(subscription_id),
            is_active=toggled.is_active,
        )
        return toggled

    async def delete_subscription(self, tenant: TenantContext, subscription_id: UUID) -> None:
        await self.get_subscription(tenant, subscription_id)
        await self._repository.delete(subscription_id)
        logger.info("webhook_subscription_deleted", subscription_id=str(subscription_id))

    async def fire_test_event(
        self,
        tenant: TenantContext,
        subscription_id: UUID,
        data: FireTestEventDTO,
    ) -> Tuple[DeliveryAttempt, DeliveryOutcome]:
        subscription = await self.get_subscription(tenant, subscription_id)
        event_type = data.event_type or DEFAULT_TEST_EVENT
        if not subscription.subscribes_to(event_type):
            raise UnsupportedEventTypeError("Webhook does not support this event type")
        payload: Any = data.payload
        if payload is None:
            payload = {"test": True, "timestamp": utcnow().isoformat()}
        attempt = DeliveryAttempt(event_type=event_type, payload=payload)
        return await self._dispatcher.fire(subscription_id, attempt)

    async def get_logs(
        self,
        tenant: TenantContext,
        subscription_id: UUID,
        *,
        status: DeliveryStatus | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> Tuple[List[DeliveryAttempt], HealthCheck, int]:
        subscription = await self.get_subscription(tenant, subscription_id)
        events = [
            entry
            for entry in subscription.event_history
            if (status is None or entry.status == status)
            and (event_type is None or entry.event_type == event_type)
        ]
        return events[:limit], subscription.health_check, len(events)

    async def retry_event(
        self, tenant: TenantContext, subscription_id: UUID, event_id: str
    ) -> Tuple[DeliveryAttempt, DeliveryOutcome]:
        await self.get_subscription(tenant, subscription_id)
        return await self._dispatcher.redeliver(subscription_id, event_id)

    async def publish(self, data: PublishEventDTO) -> List[PublishTicket]:
        return await self._dispatcher.publish(
            data.event_type,
            data.payload,
            data.context,
            owner_id=data.owner_id,
        )
