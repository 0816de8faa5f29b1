from __future__ import annotations

import pytest

from event_delivery_service.domain.enums import SubscriptionStatus
from event_delivery_service.repositories import InMemorySubscriptionRepository
from event_delivery_service.services.matcher import find_subscribers
from tests.utils import make_subscription


@pytest.fixture
async def repo():
    return InMemorySubscriptionRepository()


@pytest.mark.asyncio
async def test_matches_exact_event_and_wildcard(repo):
    exact = await repo.create(make_subscription(events=["order.created"]))
    wildcard = await repo.create(make_subscription(events=["system.*"]))
    await repo.create(make_subscription(events=["user.created"]))

    found = await find_subscribers(repo, "order.created")
    assert {s.id for s in found} == {exact.id, wildcard.id}


@pytest.mark.asyncio
async def test_inactive_and_failing_subscriptions_are_skipped(repo):
    await repo.create(make_subscription(is_active=False))
    await repo.create(make_subscription(status=SubscriptionStatus.FAILING))
    await repo.create(make_subscription(status=SubscriptionStatus.PAUSED))
    active = await repo.create(make_subscription())

    found = await find_subscribers(repo, "order.created")
    assert [s.id for s in found] == [active.id]


@pytest.mark.asyncio
async def test_filter_excludes_non_matching_context(repo):
    sub = await repo.create(
        make_subscription(filter_conditions={"campaign_id": {"$in": ["A1", "A2"]}})
    )

    assert [s.id for s in await find_subscribers(repo, "order.created", {"campaign_id": "A1"})] == [sub.id]
    assert await find_subscribers(repo, "order.created", {"campaign_id": "B7"}) == []
    assert await find_subscribers(repo, "order.created") == []


@pytest.mark.asyncio
async def test_owner_scope(repo):
    mine = await repo.create(make_subscription())
    await repo.create(make_subscription())

    found = await find_subscribers(repo, "order.created", owner_id=mine.owner_id)
    assert [s.id for s in found] == [mine.id]
