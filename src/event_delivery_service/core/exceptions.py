"""Common exceptions for domain, repository and service layers."""
from __future__ import annotations


class EventDeliveryError(Exception):
    """Base error for the event delivery service."""


class RepositoryError(EventDeliveryError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class EventNotFoundError(NotFoundError):
    """Raised when an event id is absent from a subscription's history."""


class ForbiddenError(EventDeliveryError):
    """Raised when a tenant manages a subscription it does not own."""


class InvalidEventTypeError(EventDeliveryError, ValueError):
    """Raised when a published event type is not a dotted lowercase name."""


class UnsupportedEventTypeError(EventDeliveryError):
    """Raised when a subscription is asked to handle an event type it did not subscribe to."""


class EventNotRetryableError(EventDeliveryError):
    """Raised when retrying an attempt that is not in ``failed`` state."""
