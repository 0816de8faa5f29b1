"""Route modules."""

from event_delivery_service.api.routes import events, webhooks

__all__ = ["events", "webhooks"]
