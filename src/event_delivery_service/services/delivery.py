"""Outbound HTTP delivery of one attempt to one subscription."""
from __future__ import annotations

import asyncio
import json
import socket
import time
from datetime import datetime
from typing import Any

import structlog
from aiohttp import ClientConnectorError, ClientError, ClientSession, ClientTimeout

from event_delivery_service.domain.dto import DeliveryOutcome
from event_delivery_service.domain.enums import DeliveryStatus
from event_delivery_service.domain.webhooks import (
    DeliveryAttempt,
    DeliveryError,
    DeliveryResponse,
    WebhookSubscription,
    utcnow,
)
from event_delivery_service.services.signing import SIGNATURE_HEADER, encode_body, sign

logger = structlog.get_logger(__name__)

EVENT_HEADER = "X-Webhook-Event"
SUBSCRIPTION_HEADER = "X-Webhook-ID"
DEFAULT_USER_AGENT = "WebhookDelivery/1.0"

_MAX_CAPTURED_BODY = 2000


def build_envelope(
    subscription: WebhookSubscription,
    attempt: DeliveryAttempt,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    return {
        "id": attempt.event_id,
        "type": attempt.event_type,
        "timestamp": (now or utcnow()).isoformat(),
        "data": attempt.payload,
        "version": subscription.version or "v1",
    }


def _captured_body(text: str) -> Any:
    snippet = text[:_MAX_CAPTURED_BODY]
    try:
        return json.loads(snippet)
    except ValueError:
        return snippet


def _transport_error(exc: BaseException) -> DeliveryError:
    if isinstance(exc, asyncio.TimeoutError):
        return DeliveryError(message="Request timed out", code="TIMEOUT")
    if isinstance(exc, ClientConnectorError):
        if isinstance(exc.os_error, socket.gaierror):
            return DeliveryError(message=str(exc), code="DNS_ERROR")
        return DeliveryError(message=str(exc), code="CONNECTION_ERROR")
    if isinstance(exc, ClientError):
        return DeliveryError(message=str(exc) or type(exc).__name__, code="CLIENT_ERROR")
    return DeliveryError(message=str(exc) or type(exc).__name__, code="UNKNOWN_ERROR")


class DeliveryEngine:
    """Signs and sends webhook envelopes; never raises on delivery failure."""

    def __init__(
        self,
        session: ClientSession,
        *,
        timeout_s: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self._session = session
        self._timeout = ClientTimeout(total=timeout_s)
        self._user_agent = user_agent

    def build_request(
        self,
        subscription: WebhookSubscription,
        attempt: DeliveryAttempt,
        *,
        now: datetime | None = None,
    ) -> tuple[bytes, dict[str, str]]:
        """Return the exact body bytes and headers for one attempt.

        Custom headers may replace the User-Agent but never the content
        type, signature or identification headers.
        """
        envelope = build_envelope(subscription, attempt, now=now)
        body, content_type = encode_body(envelope, subscription.format)
        headers = {"User-Agent": self._user_agent}
        headers.update(subscription.headers)
        headers.update(
            {
                "Content-Type": content_type,
                SIGNATURE_HEADER: sign(subscription.secret, body),
                EVENT_HEADER: attempt.event_type,
                SUBSCRIPTION_HEADER: str(subscription.id),
            }
        )
        return body, headers

    async def deliver(self, subscription: WebhookSubscription, attempt: DeliveryAttempt) -> DeliveryOutcome:
        started = time.perf_counter()
        body, headers = self.build_request(subscription, attempt)
        log = logger.bind(
            subscription_id=str(subscription.id),
            event_id=attempt.event_id,
            event_type=attempt.event_type,
        )
        try:
            async with self._session.request(
                subscription.method.value,
                subscription.url,
                data=body,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text(errors="replace")
                response = DeliveryResponse(
                    status_code=resp.status,
                    body=_captured_body(text),
                    headers={k: v for k, v in resp.headers.items()},
                )
        except Exception as exc:
            duration_ms = int((time.perf_counter() - started) * 1000)
            error = _transport_error(exc)
            if error.code == "UNKNOWN_ERROR":
                log.exception("webhook_delivery_error", duration_ms=duration_ms)
            else:
                log.warning(
                    "webhook_delivery_failed",
                    error_code=error.code,
                    error=error.message,
                    duration_ms=duration_ms,
                )
            return DeliveryOutcome(
                status=DeliveryStatus.FAILED,
                error=error,
                processing_time=duration_ms,
            )

        duration_ms = int((time.perf_counter() - started) * 1000)
        success = 200 <= response.status_code < 300
        if success:
            log.info("webhook_delivered", status_code=response.status_code, duration_ms=duration_ms)
        else:
            log.warning("webhook_rejected", status_code=response.status_code, duration_ms=duration_ms)
        return DeliveryOutcome(
            status=DeliveryStatus.SUCCESS if success else DeliveryStatus.FAILED,
            response=response,
            error=None
            if success
            else DeliveryError(message=f"HTTP {response.status_code}", code="HTTP_ERROR"),
            processing_time=duration_ms,
        )
