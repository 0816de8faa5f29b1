from __future__ import annotations

import pytest

from event_delivery_service.core.exceptions import EventNotFoundError
from event_delivery_service.domain.dto import DeliveryOutcome
from event_delivery_service.domain.enums import DeliveryStatus, SubscriptionStatus
from event_delivery_service.domain.webhooks import (
    DeliveryAttempt,
    DeliveryError,
    DeliveryResponse,
    utcnow,
)
from event_delivery_service.services.history import apply_outcome, record_attempt
from tests.utils import make_subscription

OK = DeliveryOutcome(
    status=DeliveryStatus.SUCCESS,
    response=DeliveryResponse(status_code=200, body={"ok": True}),
    processing_time=12,
)
FAILED = DeliveryOutcome(
    status=DeliveryStatus.FAILED,
    response=DeliveryResponse(status_code=500, body="boom"),
    error=DeliveryError(message="HTTP 500", code="HTTP_ERROR"),
    processing_time=7,
)


def _deliver(sub, outcome):
    attempt = DeliveryAttempt(event_type="order.created", payload={})
    record_attempt(sub, attempt)
    return apply_outcome(sub, attempt.event_id, outcome, now=utcnow())


def test_history_is_newest_first_and_bounded():
    sub = make_subscription()
    attempts = [DeliveryAttempt(event_type="order.created", payload={"n": i}) for i in range(105)]
    for attempt in attempts:
        record_attempt(sub, attempt)
    assert len(sub.event_history) == 100
    assert sub.event_history[0].event_id == attempts[-1].event_id
    assert sub.event_history[-1].event_id == attempts[5].event_id


def test_outcome_is_merged_into_the_entry():
    sub = make_subscription()
    entry = _deliver(sub, OK)
    assert entry.status == DeliveryStatus.SUCCESS
    assert entry.attempts == 1
    assert entry.last_attempt_at is not None
    assert entry.response is not None and entry.response.status_code == 200
    assert sub.health_check.last_success is not None
    assert sub.health_check.uptime_percentage == 100.0


def test_five_consecutive_failures_demote_to_failing():
    sub = make_subscription()
    for _ in range(4):
        _deliver(sub, FAILED)
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.health_check.consecutive_failures == 4
    _deliver(sub, FAILED)
    assert sub.health_check.consecutive_failures == 5
    assert sub.status == SubscriptionStatus.FAILING


def test_success_resets_failures_but_does_not_recover_status():
    sub = make_subscription()
    for _ in range(5):
        _deliver(sub, FAILED)
    _deliver(sub, OK)
    assert sub.health_check.consecutive_failures == 0
    assert sub.status == SubscriptionStatus.FAILING


def test_uptime_counts_pending_entries():
    sub = make_subscription()
    _deliver(sub, OK)
    _deliver(sub, FAILED)
    record_attempt(sub, DeliveryAttempt(event_type="order.created", payload={}))
    _deliver(sub, OK)
    # 2 successes out of 4 entries (one still pending)
    assert sub.health_check.uptime_percentage == pytest.approx(50.0)


def test_unreached_outcome_does_not_count_as_attempt():
    sub = make_subscription()
    attempt = DeliveryAttempt(event_type="order.created", payload={})
    record_attempt(sub, attempt)
    entry = apply_outcome(
        sub,
        attempt.event_id,
        DeliveryOutcome(status=DeliveryStatus.FAILED, reached_network=False),
        now=utcnow(),
    )
    assert entry.attempts == 0
    assert entry.last_attempt_at is None
    assert sub.health_check.consecutive_failures == 1


def test_unknown_event_raises():
    sub = make_subscription()
    with pytest.raises(EventNotFoundError):
        apply_outcome(sub, "missing", OK, now=utcnow())
