"""
backend/app/services/player_service.py

Purpose:
    Player profile reads and the few writes a player makes on their own
    profile. Rating/stat mutation after a match belongs to the settlement
    service alone; nothing here touches ``elo`` or the counters after creation.

Dependencies:
    - app.database
    - app.models.user
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from fastapi import Header, HTTPException, status

import app.database as _db
from app.config import settings
from app.models.user import DEFAULT_ELO
from app.utils import utcnow

logger = logging.getLogger("tablekick.player_service")


def new_profile_fields(username: str, now: datetime) -> dict:
    return {
        "username": username,
        "elo": DEFAULT_ELO,
        "matches_played": 0,
        "wins": 0,
        "losses": 0,
        "draws": 0,
        "created_at": now,
    }


def ratings_from_profiles(player_ids: Iterable[str], profiles: dict[str, dict]) -> dict[str, int]:
    """Rating per player; players without a profile rate as the default."""
    ratings: dict[str, int] = {}
    for pid in dict.fromkeys(player_ids):
        value = profiles.get(pid, {}).get("elo")
        ratings[pid] = int(value) if value is not None else DEFAULT_ELO
    return ratings


async def get_current_player_id(x_player_id: str = Header(..., alias="X-Player-Id")) -> str:
    """Caller identity as asserted by the authenticating gateway in front of the API."""
    player_id = x_player_id.strip()
    if not player_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing player identity.")
    return player_id


class PlayerService:
    def __init__(self, database=None) -> None:
        self._db = database

    @property
    def db(self):
        resolved = self._db if self._db is not None else _db.db
        if resolved is None:
            raise RuntimeError("Database is not initialized yet.")
        return resolved

    async def ensure_profile(self, player_id: str, username: str) -> dict:
        """Create the profile with default rating on first sign-in; existing profiles are left as is."""
        await self.db.users.update_one(
            {"_id": player_id},
            {"$setOnInsert": new_profile_fields(username, utcnow())},
            upsert=True,
        )
        return await self.get_profile(player_id)

    async def get_profile(self, player_id: str) -> dict:
        doc = await self.db.users.find_one({"_id": player_id})
        if not doc:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Player not found.")
        return doc

    async def update_username(self, player_id: str, username: str) -> dict:
        result = await self.db.users.update_one(
            {"_id": player_id},
            {"$set": {"username": username}},
        )
        if result.matched_count == 0:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Player not found.")
        logger.info("Player %s renamed to %s", player_id, username)
        return await self.get_profile(player_id)

    async def get_profiles(self, player_ids: Iterable[str]) -> dict[str, dict]:
        ids = list(dict.fromkeys(player_ids))
        if not ids:
            return {}
        docs = await self.db.users.find({"_id": {"$in": ids}}).to_list(length=len(ids))
        return {str(doc["_id"]): doc for doc in docs}

    async def get_ratings(self, player_ids: Iterable[str]) -> dict[str, int]:
        ids = list(dict.fromkeys(player_ids))
        return ratings_from_profiles(ids, await self.get_profiles(ids))

    async def leaderboard(self, limit: int | None = None) -> list[dict]:
        limit = limit or settings.LEADERBOARD_LIMIT
        return await self.db.users.find({}).sort("elo", -1).limit(limit).to_list(length=limit)


player_service = PlayerService()
