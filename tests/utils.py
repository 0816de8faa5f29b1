from __future__ import annotations

import uuid
from typing import Any

from event_delivery_service.domain.enums import CreatorRole, TenantRole
from event_delivery_service.domain.webhooks import CreatedBy, WebhookSubscription


def make_headers(tenant_id: uuid.UUID, *, role: str = "admin") -> dict[str, str]:
    return {
        "X-Tenant-Id": str(tenant_id),
        "X-Tenant-Role": role,
    }


def make_subscription(**overrides: Any) -> WebhookSubscription:
    owner_id = overrides.pop("owner_id", uuid.uuid4())
    data: dict[str, Any] = {
        "id": uuid.uuid4(),
        "owner_id": owner_id,
        "owner_role": TenantRole.ADMIN,
        "created_by": CreatedBy(id=owner_id, role=CreatorRole.ADMIN),
        "name": "orders hook",
        "url": "http://127.0.0.1:1/hook",
        "secret": "test-secret",
        "events": ["order.created"],
    }
    data.update(overrides)
    return WebhookSubscription(**data)
