"""Worker: re-drive failed webhook deliveries whose retry time has come."""
from __future__ import annotations

from datetime import datetime

from event_delivery_service.webhooks_dispatcher import WebhookDispatcher


async def webhook_auto_retry(dispatcher: WebhookDispatcher, now: datetime) -> str | None:
    """Re-deliver failed attempts with ``next_attempt_at <= now``."""
    redriven = await dispatcher.redrive_due(now)
    return f"redriven={redriven}" if redriven else None
