"""
backend/app/services/match_subscriptions.py

Purpose:
    Live change subscriptions for in-process consumers (match sessions,
    websocket pushes). Subscribers register for one match, for every match a
    player takes part in, or for the invitations addressed to a player, and
    receive the full post-change snapshot on each committed write (``None``
    once the document is deleted).

    Every subscription hands back a ``Subscription`` whose ``unsubscribe()``
    must be called on teardown; it is idempotent and stops delivery at once.

Dependencies:
    - asyncio
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

logger = logging.getLogger("tablekick.match_subscriptions")

SnapshotCallback = Callable[[str, dict[str, Any] | None], Awaitable[None]]


class Subscription:
    def __init__(self, hub: MatchSubscriptionHub, scope: str, key: str, callback: SnapshotCallback) -> None:
        self._hub = hub
        self.scope = scope
        self.key = key
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._hub._remove(self)


def _participants(snapshot: Mapping[str, Any] | None) -> set[str]:
    if not snapshot:
        return set()
    return set(snapshot.get("participants") or [])


def _invitee(snapshot: Mapping[str, Any] | None) -> set[str]:
    if not snapshot or not snapshot.get("invitee_uid"):
        return set()
    return {str(snapshot["invitee_uid"])}


class MatchSubscriptionHub:
    def __init__(self) -> None:
        self._registries: dict[str, dict[str, list[Subscription]]] = {
            "match": defaultdict(list),
            "player": defaultdict(list),
            "invitations": defaultdict(list),
        }

    def _add(self, scope: str, key: str, callback: SnapshotCallback) -> Subscription:
        sub = Subscription(self, scope, str(key), callback)
        self._registries[scope][sub.key].append(sub)
        return sub

    def subscribe_match(self, match_id: str, callback: SnapshotCallback) -> Subscription:
        return self._add("match", match_id, callback)

    def subscribe_player(self, player_id: str, callback: SnapshotCallback) -> Subscription:
        """Changes to any match the player is (or just stopped being) a participant of."""
        return self._add("player", player_id, callback)

    def subscribe_invitations(self, player_id: str, callback: SnapshotCallback) -> Subscription:
        """Invitations addressed to the player: created, answered or withdrawn.

        The callback receives ``(invitation_id, snapshot)``.
        """
        return self._add("invitations", player_id, callback)

    def subscriber_count(self, match_id: str | None = None) -> int:
        if match_id is not None:
            return len(self._registries["match"].get(str(match_id), []))
        return sum(len(subs) for registry in self._registries.values() for subs in registry.values())

    async def dispatch(
        self,
        match_id: str,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> int:
        """Deliver ``after`` to every interested subscriber. Returns the delivery count."""
        match_id = str(match_id)
        targets = list(self._registries["match"].get(match_id, []))
        for player_id in sorted(_participants(before) | _participants(after)):
            targets.extend(self._registries["player"].get(player_id, []))
        return await self._deliver(targets, match_id, after)

    async def dispatch_invitation(
        self,
        invitation_id: str,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> int:
        invitation_id = str(invitation_id)
        targets: list[Subscription] = []
        for player_id in sorted(_invitee(before) | _invitee(after)):
            targets.extend(self._registries["invitations"].get(player_id, []))
        return await self._deliver(targets, invitation_id, after)

    async def _deliver(self, targets: Iterable[Subscription], doc_id: str, after: Mapping[str, Any] | None) -> int:
        snapshot = dict(after) if after is not None else None
        delivered = 0
        for sub in targets:
            # An earlier callback in this round may have unsubscribed this one.
            if not sub.active:
                continue
            try:
                await sub.callback(doc_id, snapshot)
                delivered += 1
            except Exception:
                logger.exception("Subscriber failed scope=%s key=%s doc=%s", sub.scope, sub.key, doc_id)
        return delivered

    def _remove(self, sub: Subscription) -> None:
        registry = self._registries[sub.scope]
        subs = registry.get(sub.key)
        if not subs:
            return
        try:
            subs.remove(sub)
        except ValueError:
            return
        if not subs:
            registry.pop(sub.key, None)


match_subscriptions = MatchSubscriptionHub()
