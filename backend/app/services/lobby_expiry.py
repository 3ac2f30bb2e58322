"""
backend/app/services/lobby_expiry.py

Purpose:
    Cooperative lobby expiry. Every client watching a lobby counts down from
    its ``last_activity_at``; when the window runs out the client asks for the
    lobby to be deleted. Several clients may fire for the same lobby, which is
    fine because ``MatchService.delete_lobby`` is a no-op on repeat.

Dependencies:
    - asyncio
    - app.config
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from datetime import datetime

from app.config import settings
from app.utils import seconds_since, utcnow

logger = logging.getLogger("tablekick.lobby_expiry")

WARNING_FRACTION = 0.25


def remaining_seconds(
    last_activity_at: datetime | None,
    now: datetime | None = None,
    timeout: int | None = None,
) -> int:
    """Whole seconds left before the lobby expires, never negative.

    A lobby without an activity timestamp shows the full window and does not
    count down.
    """
    timeout = settings.LOBBY_EXPIRY_SECONDS if timeout is None else timeout
    elapsed = seconds_since(last_activity_at, now)
    if elapsed is None:
        return timeout
    return max(0, timeout - math.floor(elapsed))


def expiry_progress(remaining: int, timeout: int | None = None) -> float:
    """Fraction of the window left, 1.0 (fresh) to 0.0 (expired)."""
    timeout = settings.LOBBY_EXPIRY_SECONDS if timeout is None else timeout
    if timeout <= 0:
        return 0.0
    return max(0.0, min(1.0, remaining / timeout))


def is_warning(remaining: int, timeout: int | None = None) -> bool:
    return expiry_progress(remaining, timeout) <= WARNING_FRACTION


class LobbyExpiryWatcher:
    """Ticks once per ``tick_seconds`` and calls ``on_expire`` at most once."""

    def __init__(
        self,
        last_activity_at: datetime | None,
        on_expire: Callable[[], Awaitable[None]],
        *,
        timeout: int | None = None,
        tick_seconds: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
        on_tick: Callable[[int], None] | None = None,
    ) -> None:
        self._last_activity_at = last_activity_at
        self._on_expire = on_expire
        self._timeout = settings.LOBBY_EXPIRY_SECONDS if timeout is None else timeout
        self._tick_seconds = tick_seconds
        self._clock = clock
        self._on_tick = on_tick
        self._task: asyncio.Task | None = None
        self._fired = False

    @property
    def remaining(self) -> int:
        return remaining_seconds(self._last_activity_at, self._clock(), self._timeout)

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running or self._fired:
            return
        self._task = asyncio.create_task(self._run(), name="lobby_expiry_watcher")

    def reset(self, last_activity_at: datetime | None) -> None:
        """Fresh lobby activity restarts the window."""
        self._last_activity_at = last_activity_at

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while not self._fired:
            remaining = self.remaining
            if self._on_tick is not None:
                self._on_tick(remaining)
            if remaining <= 0:
                await self._fire()
                return
            await asyncio.sleep(self._tick_seconds)

    async def _fire(self) -> None:
        self._fired = True
        logger.info("Lobby expired (last activity %s)", self._last_activity_at)
        try:
            await self._on_expire()
        except Exception:
            logger.exception("Lobby expiry callback failed")
