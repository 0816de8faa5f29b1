"""Webhook domain primitives."""
from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from event_delivery_service.core.exceptions import InvalidEventTypeError
from event_delivery_service.domain.enums import (
    BodyFormat,
    CreatorRole,
    DeliveryStatus,
    HttpMethod,
    SubscriptionStatus,
    TenantRole,
)

# Catch-all token: matches every event type, not only ``system.`` ones.
WILDCARD_EVENT = "system.*"

EVENT_CATALOG: frozenset[str] = frozenset(
    {
        "user.created", "user.updated", "user.verified", "user.deleted",
        "admin.created", "admin.updated", "admin.approved", "admin.rejected",
        "campaign.created", "campaign.approved", "campaign.published", "campaign.paused",
        "product.created", "product.approved", "product.published",
        "order.created", "order.paid", "order.fulfilled", "order.cancelled", "order.refunded",
        "payment.created", "payment.succeeded", "payment.failed", "payment.refunded",
        "verification.started", "verification.succeeded", "verification.failed",
        "message.sent", "message.delivered", "message.read", "message.received",
        "session.started", "session.updated", "session.completed", "session.abandoned",
        "lead.created", "lead.assigned", "lead.converted", "lead.lost",
        "workflow.started", "workflow.step_completed", "workflow.completed",
        WILDCARD_EVENT,
    }
)

EVENT_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z0-9_]+)+$")

HISTORY_LIMIT = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_event_id() -> str:
    return secrets.token_hex(16)


def new_secret() -> str:
    return secrets.token_hex(32)


def validate_event_type(event_type: str) -> str:
    if not isinstance(event_type, str) or not EVENT_TYPE_PATTERN.match(event_type):
        raise InvalidEventTypeError(f"Invalid event type: {event_type!r}")
    return event_type


class CreatedBy(BaseModel):
    id: UUID
    role: CreatorRole


class RetryConfig(BaseModel):
    max_retries: int = Field(default=5, ge=0)
    retry_interval: int = Field(default=60, ge=1)  # seconds
    retry_backoff: bool = True
    retry_wait: int = Field(default=3600, ge=1)  # max wait, seconds


class RateLimiting(BaseModel):
    enabled: bool = False
    requests_per_minute: int = Field(default=60, ge=1)
    current_minute_requests: int = 0
    last_reset_at: datetime = Field(default_factory=utcnow)


class HealthCheck(BaseModel):
    last_success: datetime | None = None
    last_failure: datetime | None = None
    consecutive_failures: int = 0
    uptime_percentage: float = 100.0


class DeliveryResponse(BaseModel):
    status_code: int
    body: Any = None
    headers: dict[str, str] = Field(default_factory=dict)


class DeliveryError(BaseModel):
    message: str
    code: str


class DeliveryAttempt(BaseModel):
    """One event occurrence routed to one subscription."""

    event_id: str = Field(default_factory=new_event_id)
    event_type: str
    payload: Any
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    last_attempt_at: datetime | None = None
    next_attempt_at: datetime | None = None
    response: DeliveryResponse | None = None
    error: DeliveryError | None = None
    processing_time: int | None = None  # milliseconds


class WebhookSubscription(BaseModel):
    id: UUID
    owner_id: UUID
    owner_role: TenantRole
    created_by: CreatedBy
    name: str
    description: str | None = None
    url: str
    method: HttpMethod = HttpMethod.POST
    format: BodyFormat = BodyFormat.JSON
    headers: dict[str, str] = Field(default_factory=dict)
    version: str = "v1"
    secret: str
    events: list[str] = Field(default_factory=list)
    filter_conditions: dict[str, Any] | None = None
    is_active: bool = True
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    rate_limiting: RateLimiting = Field(default_factory=RateLimiting)
    health_check: HealthCheck = Field(default_factory=HealthCheck)
    event_history: list[DeliveryAttempt] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in self.events or WILDCARD_EVENT in self.events

    def find_event(self, event_id: str) -> DeliveryAttempt | None:
        for attempt in self.event_history:
            if attempt.event_id == event_id:
                return attempt
        return None
