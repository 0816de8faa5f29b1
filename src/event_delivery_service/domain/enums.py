"""Domain enums."""
from __future__ import annotations

from enum import Enum


class SubscriptionStatus(str, Enum):
    """Informational subscription state; ``failing`` is set by health tracking."""

    ACTIVE = "active"
    PAUSED = "paused"
    FAILING = "failing"
    INACTIVE = "inactive"


class DeliveryStatus(str, Enum):
    """Outcome of one delivery attempt."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"


class HttpMethod(str, Enum):
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"


class BodyFormat(str, Enum):
    JSON = "json"
    FORM = "form"
    XML = "xml"


class TenantRole(str, Enum):
    """Roles allowed to manage subscriptions."""

    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class CreatorRole(str, Enum):
    ADMIN = "admin"
    SUPERADMIN = "superadmin"
    SYSTEM = "system"
