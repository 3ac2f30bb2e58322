"""
backend/tests/test_lobby_expiry.py

Purpose:
    Lobby countdown math and the watcher's fire-once / reset / stop contract.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import timedelta

import pytest

sys.path.insert(0, "backend")

from app.services.lobby_expiry import LobbyExpiryWatcher, expiry_progress, is_warning, remaining_seconds
from app.utils import utcnow


def test_remaining_seconds_counts_down_in_whole_seconds():
    now = utcnow()
    assert remaining_seconds(now, now, 30) == 30
    assert remaining_seconds(now - timedelta(seconds=12.7), now, 30) == 18
    assert remaining_seconds(now - timedelta(seconds=30), now, 30) == 0
    assert remaining_seconds(now - timedelta(minutes=5), now, 30) == 0


def test_missing_activity_shows_full_window():
    assert remaining_seconds(None, utcnow(), 30) == 30


def test_naive_timestamps_are_treated_as_utc():
    now = utcnow()
    naive = (now - timedelta(seconds=10)).replace(tzinfo=None)
    assert remaining_seconds(naive, now, 30) == 20


def test_progress_and_warning_threshold():
    assert expiry_progress(30, 30) == 1.0
    assert expiry_progress(0, 30) == 0.0
    assert is_warning(7, 30) is True
    assert is_warning(8, 30) is False


@pytest.mark.asyncio
async def test_watcher_fires_once_when_window_elapsed():
    calls = 0

    async def on_expire():
        nonlocal calls
        calls += 1

    watcher = LobbyExpiryWatcher(utcnow() - timedelta(seconds=31), on_expire, timeout=30, tick_seconds=0.01)
    watcher.start()
    await asyncio.sleep(0.05)
    watcher.start()
    await asyncio.sleep(0.05)

    assert calls == 1
    assert watcher.fired is True
    assert watcher.running is False


@pytest.mark.asyncio
async def test_watcher_reset_postpones_expiry():
    calls = 0
    now = [utcnow()]

    async def on_expire():
        nonlocal calls
        calls += 1

    watcher = LobbyExpiryWatcher(now[0], on_expire, timeout=30, tick_seconds=0.01, clock=lambda: now[0])
    watcher.start()
    now[0] = now[0] + timedelta(seconds=29)
    await asyncio.sleep(0.03)
    assert calls == 0

    watcher.reset(now[0])
    now[0] = now[0] + timedelta(seconds=20)
    await asyncio.sleep(0.03)
    assert calls == 0
    assert watcher.remaining == 10

    now[0] = now[0] + timedelta(seconds=10)
    await asyncio.sleep(0.03)
    assert calls == 1


@pytest.mark.asyncio
async def test_stopped_watcher_never_fires():
    calls = 0

    async def on_expire():
        nonlocal calls
        calls += 1

    watcher = LobbyExpiryWatcher(utcnow(), on_expire, timeout=1, tick_seconds=0.01)
    watcher.start()
    watcher.stop()
    await asyncio.sleep(1.1)

    assert calls == 0
    assert watcher.running is False


@pytest.mark.asyncio
async def test_failing_callback_is_contained():
    async def on_expire():
        raise RuntimeError("delete failed")

    watcher = LobbyExpiryWatcher(None, on_expire, timeout=0, tick_seconds=0.01)
    watcher.start()
    await asyncio.sleep(0.03)
    assert watcher.fired is True
