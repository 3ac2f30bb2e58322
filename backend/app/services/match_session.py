"""
backend/app/services/match_session.py

Purpose:
    One client's view of one match: the latest snapshot kept current by a
    live subscription, the elapsed-time ticker while the match is live and
    the lobby expiry countdown while it is a lobby. Every resource the session
    owns is released by ``close()``, which ``async with`` always calls, so
    leaving a match can never leave an orphaned ticker or subscription behind.

Dependencies:
    - app.services.match_service
    - app.services.match_subscriptions
    - app.services.lobby_expiry
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from app.models.match import MatchStatus, Role, TeamColor
from app.services.lobby_expiry import LobbyExpiryWatcher
from app.services.match_service import GoalOutcome, MatchService, match_service
from app.services.match_subscriptions import MatchSubscriptionHub, Subscription, match_subscriptions
from app.utils import ensure_utc, utcnow

logger = logging.getLogger("tablekick.match_session")

SnapshotCallback = Callable[[dict[str, Any] | None], Awaitable[None]]


def format_elapsed(seconds: int) -> str:
    """``MM:SS`` clock shown during a live match."""
    mins, secs = divmod(max(0, int(seconds)), 60)
    return f"{mins:02d}:{secs:02d}"


class MatchSession:
    def __init__(
        self,
        match_id: str,
        player_id: str,
        *,
        service: MatchService | None = None,
        hub: MatchSubscriptionHub | None = None,
        on_change: SnapshotCallback | None = None,
        tick_seconds: float = 1.0,
        expiry_timeout: int | None = None,
    ) -> None:
        self.match_id = str(match_id)
        self.player_id = player_id
        self._service = service or match_service
        self._hub = hub or match_subscriptions
        self._on_change = on_change
        self._tick_seconds = tick_seconds
        self._expiry_timeout = expiry_timeout

        self.snapshot: dict[str, Any] | None = None
        self.elapsed = 0
        self.deleted = False
        self._subscription: Subscription | None = None
        self._ticker: asyncio.Task | None = None
        self._expiry: LobbyExpiryWatcher | None = None
        self._closed = False

    # ---------- Lifecycle ----------

    async def open(self) -> MatchSession:
        """Load the match (404 if it doesn't exist) and start following it."""
        if self._subscription is not None:
            return self
        doc = await self._service.get_match(self.match_id)
        self._closed = False
        self._subscription = self._hub.subscribe_match(self.match_id, self._handle_change)
        self._apply(doc)
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._stop_ticker()
        self._stop_expiry()
        logger.debug("Session for player %s on match %s closed", self.player_id, self.match_id)

    async def __aenter__(self) -> MatchSession:
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def status(self) -> MatchStatus | None:
        if not self.snapshot:
            return None
        return MatchStatus(self.snapshot.get("status"))

    @property
    def ticking(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def expiry(self) -> LobbyExpiryWatcher | None:
        return self._expiry

    def elapsed_seconds(self) -> int:
        if not self.snapshot or self.snapshot.get("started_at") is None:
            return 0
        started = ensure_utc(self.snapshot["started_at"])
        ended = self.snapshot.get("ended_at")
        end = ensure_utc(ended) if ended is not None else utcnow()
        return max(0, int((end - started).total_seconds()))

    # ---------- Actions ----------

    async def assign(self, team: TeamColor, role: Role, player_id: str | None = None) -> dict | None:
        return await self._service.assign_to_team(self.match_id, player_id or self.player_id, team, role)

    async def remove(self, team: TeamColor, role: Role) -> dict | None:
        return await self._service.remove_from_team(self.match_id, team, role)

    async def start(self) -> dict | None:
        return await self._service.start_match(self.match_id, self.player_id)

    async def goal(self, team: TeamColor) -> GoalOutcome | None:
        return await self._service.add_goal(self.match_id, team)

    async def swap(self, team: TeamColor) -> dict | None:
        return await self._service.swap_roles(self.match_id, team)

    async def complete(self, final_red_score: int | None = None, final_blue_score: int | None = None):
        return await self._service.complete_match(self.match_id, final_red_score, final_blue_score)

    # ---------- Internals ----------

    async def _handle_change(self, _match_id: str, snapshot: dict[str, Any] | None) -> None:
        if self._closed:
            return
        self._apply(snapshot)
        if self._on_change is not None:
            await self._on_change(snapshot)

    def _apply(self, snapshot: dict[str, Any] | None) -> None:
        self.snapshot = snapshot
        if snapshot is None:
            self.deleted = True
            self._stop_ticker()
            self._stop_expiry()
            return

        status = snapshot.get("status")
        if status == MatchStatus.LOBBY.value:
            self._follow_lobby(snapshot)
        else:
            self._stop_expiry()

        self.elapsed = self.elapsed_seconds()
        if status == MatchStatus.LIVE.value:
            if not self.ticking:
                self._ticker = asyncio.create_task(self._tick(), name=f"match_timer_{self.match_id}")
        else:
            self._stop_ticker()

    def _follow_lobby(self, snapshot: dict[str, Any]) -> None:
        last_activity = snapshot.get("last_activity_at")
        if self._expiry is None:
            self._expiry = LobbyExpiryWatcher(
                last_activity,
                self._expire_lobby,
                timeout=self._expiry_timeout,
                tick_seconds=self._tick_seconds,
            )
            self._expiry.start()
        else:
            self._expiry.reset(last_activity)

    async def _expire_lobby(self) -> None:
        await self._service.delete_lobby(self.match_id)

    async def _tick(self) -> None:
        while True:
            self.elapsed = self.elapsed_seconds()
            await asyncio.sleep(self._tick_seconds)

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _stop_expiry(self) -> None:
        if self._expiry is not None:
            self._expiry.stop()
            self._expiry = None
