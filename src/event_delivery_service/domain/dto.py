"""Pydantic DTOs for the service and API layers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from event_delivery_service.domain.enums import (
    BodyFormat,
    DeliveryStatus,
    HttpMethod,
    SubscriptionStatus,
    TenantRole,
)
from event_delivery_service.domain.webhooks import (
    EVENT_CATALOG,
    DeliveryError,
    DeliveryResponse,
    RetryConfig,
)


@dataclass(frozen=True)
class TenantContext:
    """Caller identity as forwarded by the API gateway."""

    tenant_id: UUID
    role: TenantRole

    @property
    def is_platform_operator(self) -> bool:
        return self.role == TenantRole.SUPERADMIN


def normalize_events(value: list[str]) -> list[str]:
    """Strip, de-duplicate (keeping order) and check against the catalog."""
    events = [e.strip() for e in value if e and e.strip()]
    events = list(dict.fromkeys(events))
    if not events:
        raise ValueError("events must be a non-empty list")
    unknown = [e for e in events if e not in EVENT_CATALOG]
    if unknown:
        raise ValueError(f"unsupported event types: {', '.join(unknown)}")
    return events


def check_url(value: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError("url must be an http(s) URL")
    return value


class RateLimitPolicyDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    requests_per_minute: int = Field(default=60, ge=1)


class SubscriptionCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str | None = None
    url: str
    method: HttpMethod = HttpMethod.POST
    format: BodyFormat = BodyFormat.JSON
    headers: dict[str, str] = Field(default_factory=dict)
    version: str = "v1"
    secret: str | None = None
    events: list[str] = Field(min_length=1)
    filter_conditions: dict[str, Any] | None = None
    is_active: bool = True
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    rate_limiting: RateLimitPolicyDTO = Field(default_factory=RateLimitPolicyDTO)
    tags: list[str] = Field(default_factory=list)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str]) -> list[str]:
        return normalize_events(value)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        return check_url(value)


class SubscriptionUpdateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    url: str | None = None
    method: HttpMethod | None = None
    format: BodyFormat | None = None
    headers: dict[str, str] | None = None
    version: str | None = None
    secret: str | None = None
    events: list[str] | None = None
    filter_conditions: dict[str, Any] | None = None
    is_active: bool | None = None
    status: SubscriptionStatus | None = None
    retry_config: RetryConfig | None = None
    rate_limiting: RateLimitPolicyDTO | None = None
    tags: list[str] | None = None

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else normalize_events(value)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str | None) -> str | None:
        return None if value is None else check_url(value)


class FireTestEventDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_type: str | None = None
    payload: Any = None


class PublishEventDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_type: str
    payload: Any = Field(default_factory=dict)
    context: dict[str, Any] | None = None
    owner_id: UUID | None = None


class DeliveryOutcome(BaseModel):
    """Result of one delivery try, merged into the matching history entry."""

    status: DeliveryStatus
    response: DeliveryResponse | None = None
    error: DeliveryError | None = None
    processing_time: int = 0  # milliseconds
    reached_network: bool = True

    @property
    def success(self) -> bool:
        return self.status == DeliveryStatus.SUCCESS


class PublishTicket(BaseModel):
    subscription_id: UUID
    event_id: str | None = None
    status: Literal["queued", "error"] = "queued"
    error: str | None = None
