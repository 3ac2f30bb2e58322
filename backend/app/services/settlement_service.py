"""
backend/app/services/settlement_service.py

Purpose:
    Completion settlement: the one and only writer of player ratings and
    win/loss counters. Reacts to the lobby/live -> completed transition of a
    match document, computes the Elo outcome from the post-update snapshot and
    commits every profile change plus the match's ``elo_changes`` in a single
    transaction.

    Exactly-once: the match write inside the batch is filtered on
    ``elo_changes`` still being empty. A replayed or concurrent delivery finds
    it populated, the batch aborts with ``BatchConflict`` and nothing is
    applied twice.

Dependencies:
    - app.services.elo_service
    - app.services.player_service
    - app.services.write_batch
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import app.database as _db
from app.models.match import MatchInDB, MatchStatus
from app.services.elo_service import Settlement, settle
from app.services.player_service import PlayerService, new_profile_fields, ratings_from_profiles
from app.services.write_batch import BatchConflict, WriteBatch
from app.utils import utcnow

logger = logging.getLogger("tablekick.settlement_service")

UNSETTLED_FILTER: dict[str, Any] = {"elo_changes": {"$in": [None, {}]}}


@dataclass(frozen=True)
class SettlementPlan:
    """Everything one settlement writes, computed without touching the store."""

    match_id: Any
    settlement: Settlement
    profile_increments: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def elo_changes(self) -> dict[str, int]:
        return dict(self.settlement.changes)


def _status(snapshot: Mapping[str, Any] | None) -> str | None:
    if not snapshot:
        return None
    return snapshot.get("status")


def should_settle(before: Mapping[str, Any] | None, after: Mapping[str, Any] | None) -> bool:
    """Edge-triggered guard: only the transition into completed, only while unsettled."""
    if after is None:
        return False
    if _status(before) == MatchStatus.COMPLETED.value:
        return False
    if _status(after) != MatchStatus.COMPLETED.value:
        return False
    return not after.get("elo_changes")


def plan_settlement(after: Mapping[str, Any], ratings: Mapping[str, float]) -> SettlementPlan:
    match = MatchInDB.model_validate(dict(after))
    result = settle(match.red_team, match.blue_team, ratings)

    increments: dict[str, dict[str, int]] = {}
    for pid, delta in result.changes.items():
        inc = {"elo": delta, "matches_played": 1}
        if pid in result.winners:
            inc["wins"] = 1
        elif pid in result.losers:
            inc["losses"] = 1
        else:
            inc["draws"] = 1
        increments[pid] = inc

    return SettlementPlan(match_id=after.get("_id"), settlement=result, profile_increments=increments)


class SettlementService:
    def __init__(self, database=None, players: PlayerService | None = None) -> None:
        self._db = database
        self._players = players

    @property
    def db(self):
        resolved = self._db if self._db is not None else _db.db
        if resolved is None:
            raise RuntimeError("Database is not initialized yet.")
        return resolved

    @property
    def players(self) -> PlayerService:
        if self._players is None:
            self._players = PlayerService(self._db)
        return self._players

    async def settle_match_update(
        self,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> SettlementPlan | None:
        """Trigger entry point: one call per committed match write."""
        if not should_settle(before, after):
            return None
        return await self.settle_completed_match(after)

    async def settle_completed_match(self, match: Mapping[str, Any]) -> SettlementPlan | None:
        """Settle a completed, unsettled match. Returns ``None`` if another delivery won."""
        match_id = match.get("_id")
        participants = list(match.get("participants") or [])
        for team_key in ("red_team", "blue_team"):
            team = match.get(team_key) or {}
            participants.extend(pid for pid in (team.get("attacker"), team.get("defender")) if pid is not None)

        profiles = await self.players.get_profiles(participants)
        plan = plan_settlement(match, ratings_from_profiles(participants, profiles))

        now = utcnow()
        batch = WriteBatch(self._db)
        for pid, inc in plan.profile_increments.items():
            if pid not in profiles:
                # Rated at the default above, so start the profile there too.
                batch.update("users", {"_id": pid}, {"$setOnInsert": new_profile_fields(pid, now)}, upsert=True)
            batch.update("users", {"_id": pid}, {"$inc": inc})
        batch.update(
            "matches",
            {"_id": match_id, "status": MatchStatus.COMPLETED.value, **UNSETTLED_FILTER},
            {"$set": {"elo_changes": plan.elo_changes, "settled_at": now}},
            require_match=True,
        )
        try:
            await batch.commit()
        except BatchConflict:
            logger.info("Settlement replay for match %s ignored: already settled", match_id)
            return None

        logger.info(
            "Settled match %s (%s wins): %s",
            match_id, plan.settlement.outcome, plan.elo_changes,
        )
        return plan

    async def find_unsettled(self, limit: int) -> list[dict]:
        return await (
            self.db.matches.find({"status": MatchStatus.COMPLETED.value, **UNSETTLED_FILTER})
            .sort("ended_at", 1)
            .limit(limit)
            .to_list(length=limit)
        )


settlement_service = SettlementService()
