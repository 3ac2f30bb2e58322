"""
backend/tests/test_match_subscriptions.py

Purpose:
    Subscription hub: per-match and per-player delivery, idempotent
    unsubscribe and isolation of failing subscribers.
"""

from __future__ import annotations

import sys

import pytest

sys.path.insert(0, "backend")

from app.services.match_subscriptions import MatchSubscriptionHub


@pytest.mark.asyncio
async def test_match_subscribers_receive_snapshots():
    hub = MatchSubscriptionHub()
    seen = []

    async def callback(match_id, snapshot):
        seen.append((match_id, snapshot))

    hub.subscribe_match("m1", callback)
    await hub.dispatch("m1", {"status": "lobby"}, {"status": "live"})
    await hub.dispatch("m2", None, {"status": "lobby"})

    assert seen == [("m1", {"status": "live"})]


@pytest.mark.asyncio
async def test_player_subscription_follows_membership():
    hub = MatchSubscriptionHub()
    seen = []

    async def callback(match_id, snapshot):
        seen.append(match_id)

    hub.subscribe_player("bob", callback)
    await hub.dispatch("m1", None, {"participants": ["alice", "bob"]})
    await hub.dispatch("m2", None, {"participants": ["alice"]})
    # Removed from the lobby: still told once so the list can drop it.
    await hub.dispatch("m3", {"participants": ["bob"]}, {"participants": []})
    # Deleted lobby
    await hub.dispatch("m4", {"participants": ["bob"]}, None)

    assert seen == ["m1", "m3", "m4"]


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent_and_stops_delivery():
    hub = MatchSubscriptionHub()
    calls = 0

    async def callback(_match_id, _snapshot):
        nonlocal calls
        calls += 1

    sub = hub.subscribe_match("m1", callback)
    await hub.dispatch("m1", None, {})
    sub.unsubscribe()
    sub.unsubscribe()
    await hub.dispatch("m1", None, {})

    assert calls == 1
    assert sub.active is False
    assert hub.subscriber_count() == 0


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others():
    hub = MatchSubscriptionHub()
    delivered = []

    async def broken(_match_id, _snapshot):
        raise RuntimeError("render failed")

    async def healthy(match_id, _snapshot):
        delivered.append(match_id)

    hub.subscribe_match("m1", broken)
    hub.subscribe_match("m1", healthy)

    assert await hub.dispatch("m1", None, {"status": "live"}) == 1
    assert delivered == ["m1"]


@pytest.mark.asyncio
async def test_unsubscribe_during_dispatch_skips_pending_delivery():
    hub = MatchSubscriptionHub()
    calls = []
    subs = {}

    async def first(_match_id, _snapshot):
        calls.append("first")
        subs["second"].unsubscribe()

    async def second(_match_id, _snapshot):
        calls.append("second")

    subs["first"] = hub.subscribe_match("m1", first)
    subs["second"] = hub.subscribe_match("m1", second)
    await hub.dispatch("m1", None, {})

    assert calls == ["first"]
    assert hub.subscriber_count("m1") == 1


@pytest.mark.asyncio
async def test_invitation_subscription_sees_own_invitations_only():
    hub = MatchSubscriptionHub()
    seen = []

    async def callback(invitation_id, snapshot):
        seen.append((invitation_id, snapshot and snapshot["status"]))

    hub.subscribe_invitations("bob", callback)
    await hub.dispatch_invitation("i1", None, {"invitee_uid": "bob", "status": "pending"})
    await hub.dispatch_invitation("i2", None, {"invitee_uid": "carol", "status": "pending"})
    await hub.dispatch_invitation("i1", {"invitee_uid": "bob", "status": "pending"}, {"invitee_uid": "bob", "status": "accepted"})
    # Withdrawn with its lobby
    await hub.dispatch_invitation("i3", {"invitee_uid": "bob", "status": "pending"}, None)
    # Match updates never reach invitation subscribers.
    await hub.dispatch("m1", None, {"participants": ["bob"]})

    assert seen == [("i1", "pending"), ("i1", "accepted"), ("i3", None)]


@pytest.mark.asyncio
async def test_invitation_unsubscribe_stops_delivery():
    hub = MatchSubscriptionHub()
    calls = 0

    async def callback(_invitation_id, _snapshot):
        nonlocal calls
        calls += 1

    sub = hub.subscribe_invitations("bob", callback)
    assert await hub.dispatch_invitation("i1", None, {"invitee_uid": "bob"}) == 1
    sub.unsubscribe()
    sub.unsubscribe()

    assert await hub.dispatch_invitation("i2", None, {"invitee_uid": "bob"}) == 0
    assert calls == 1
    assert hub.subscriber_count() == 0
