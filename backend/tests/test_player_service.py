"""
backend/tests/test_player_service.py

Purpose:
    Profile creation defaults, rating lookups and the leaderboard ordering.
"""

from __future__ import annotations

import sys

import pytest
from fastapi import HTTPException

sys.path.insert(0, "backend")

from app.services.player_service import PlayerService, get_current_player_id


@pytest.mark.asyncio
async def test_ensure_profile_creates_defaults_once(fake_db):
    service = PlayerService(fake_db)

    created = await service.ensure_profile("p1", "Pat")
    await fake_db.users.update_one({"_id": "p1"}, {"$inc": {"elo": 30}})
    again = await service.ensure_profile("p1", "Someone Else")

    assert (created["elo"], created["matches_played"], created["wins"], created["losses"]) == (1000, 0, 0, 0)
    assert again["username"] == "Pat"
    assert again["elo"] == 1030


@pytest.mark.asyncio
async def test_ratings_default_for_unknown_players(fake_db):
    service = PlayerService(fake_db)
    await fake_db.users.insert_one({"_id": "a", "username": "a", "elo": 1210})

    assert await service.get_ratings(["a", "b", "a"]) == {"a": 1210, "b": 1000}
    assert await service.get_ratings([]) == {}


@pytest.mark.asyncio
async def test_leaderboard_orders_by_elo(fake_db):
    service = PlayerService(fake_db)
    for uid, elo in (("low", 950), ("top", 1300), ("mid", 1100)):
        await fake_db.users.insert_one({"_id": uid, "username": uid, "elo": elo})

    board = await service.leaderboard(limit=2)
    assert [doc["_id"] for doc in board] == ["top", "mid"]


@pytest.mark.asyncio
async def test_rename_and_missing_profiles(fake_db):
    service = PlayerService(fake_db)
    await service.ensure_profile("p1", "Pat")

    renamed = await service.update_username("p1", "Patricia")
    assert renamed["username"] == "Patricia"
    with pytest.raises(HTTPException) as exc:
        await service.update_username("nobody", "x")
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_player_identity_header():
    assert await get_current_player_id("  p1 ") == "p1"
    with pytest.raises(HTTPException) as exc:
        await get_current_player_id("   ")
    assert exc.value.status_code == 401
