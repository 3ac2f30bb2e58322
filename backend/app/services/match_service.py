"""
backend/app/services/match_service.py

Purpose:
    Match lifecycle state machine (lobby -> live -> completed). Each operation
    is one guarded document write: the guard lives in the update filter, so
    state checks and mutations are evaluated atomically by the store and a
    rejected guard is a silent no-op rather than an error.

Dependencies:
    - app.database
    - app.services.match_update
    - app.services.elo_service
    - app.services.player_service
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status
from pymongo import ReturnDocument

import app.database as _db
from app.config import settings
from app.models.common import to_object_id
from app.models.invitation import InvitationStatus
from app.models.match import (
    MatchEvent,
    MatchInDB,
    MatchStatus,
    Role,
    TeamColor,
    new_match_doc,
    score_path,
    slot_path,
)
from app.services.elo_service import Settlement, settle
from app.services.match_update import MatchUpdate, assign_slot_pipeline, swap_roles_pipeline
from app.services.player_service import PlayerService
from app.utils import utcnow

logger = logging.getLogger("tablekick.match_service")


@dataclass(frozen=True)
class GoalOutcome:
    """Store-confirmed state right after a goal was counted."""

    match: dict[str, Any]
    red_score: int
    blue_score: int
    winner: TeamColor | None = None
    settlement: Settlement | None = None


def winning_team(
    red_score: int,
    blue_score: int,
    *,
    win_score: int | None = None,
    margin: int | None = None,
) -> TeamColor | None:
    """First to ``win_score`` with a lead of at least ``margin``."""
    win_score = settings.WIN_SCORE if win_score is None else win_score
    margin = settings.WIN_MARGIN if margin is None else margin
    if red_score >= win_score and red_score - blue_score >= margin:
        return "red"
    if blue_score >= win_score and blue_score - red_score >= margin:
        return "blue"
    return None


def _team_occupied(team: TeamColor) -> dict[str, Any]:
    return {
        "$or": [
            {slot_path(team, "attacker"): {"$ne": None}},
            {slot_path(team, "defender"): {"$ne": None}},
        ]
    }


class MatchService:
    def __init__(self, database=None, players: PlayerService | None = None) -> None:
        self._db = database
        self._players = players

    @property
    def db(self):
        """Resolve DB lazily so the module-level singleton works before connect_db()."""
        resolved = self._db if self._db is not None else _db.db
        if resolved is None:
            raise RuntimeError("Database is not initialized yet.")
        return resolved

    @property
    def players(self) -> PlayerService:
        if self._players is None:
            self._players = PlayerService(self._db)
        return self._players

    # ---------- Reads ----------

    async def find_match(self, match_id: str) -> dict | None:
        return await self.db.matches.find_one({"_id": to_object_id(match_id)})

    async def get_match(self, match_id: str) -> dict:
        match = await self.find_match(match_id)
        if not match:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Match not found.")
        return match

    async def list_player_matches(self, player_id: str, limit: int | None = None) -> list[dict]:
        limit = limit or settings.MATCH_HISTORY_LIMIT
        return await (
            self.db.matches.find({"participants": player_id})
            .sort("created_at", -1)
            .limit(limit)
            .to_list(length=limit)
        )

    # ---------- Lobby ----------

    async def create_match(self, creator_id: str) -> str:
        doc = new_match_doc(creator_id, utcnow())
        result = await self.db.matches.insert_one(doc)
        logger.info("Lobby %s created by %s", result.inserted_id, creator_id)
        return str(result.inserted_id)

    async def assign_to_team(self, match_id: str, player_id: str, team: TeamColor, role: Role) -> dict | None:
        """Move a participant into a slot, vacating whatever slot they held before."""
        guard = {"status": MatchStatus.LOBBY.value, "participants": player_id}
        return await self._guarded_update(
            match_id,
            guard,
            assign_slot_pipeline(player_id, team, role, utcnow()),
            action="assign",
        )

    async def remove_from_team(self, match_id: str, team: TeamColor, role: Role) -> dict | None:
        update = MatchUpdate().clear_slot(team, role).touch(utcnow())
        return await self._guarded_update(
            match_id,
            {"status": MatchStatus.LOBBY.value},
            update.to_mongo(),
            action="remove",
        )

    async def start_match(self, match_id: str, player_id: str) -> dict | None:
        """Creator-only; both teams need at least one player (1v1 up to 2v2, uneven allowed)."""
        guard = {
            "status": MatchStatus.LOBBY.value,
            "created_by": player_id,
            "$and": [_team_occupied("red"), _team_occupied("blue")],
        }
        update = MatchUpdate().set_status(MatchStatus.LIVE, "started_at", utcnow())
        match = await self._guarded_update(match_id, guard, update.to_mongo(), action="start")
        if match is not None:
            logger.info("Match %s started by %s", match_id, player_id)
        return match

    async def delete_lobby(self, match_id: str) -> bool:
        """Dispose of a lobby. Safe to repeat: gone or already-live matches are left alone."""
        oid = to_object_id(match_id)
        result = await self.db.matches.delete_one({"_id": oid, "status": MatchStatus.LOBBY.value})
        if result.deleted_count == 0:
            return False
        await self.db.invitations.delete_many(
            {"match_id": str(oid), "status": InvitationStatus.PENDING.value}
        )
        logger.info("Lobby %s deleted", match_id)
        return True

    # ---------- Live ----------

    async def add_goal(self, match_id: str, team: TeamColor) -> GoalOutcome | None:
        """Count one goal and complete the match if it was the winning one.

        The win check runs on the score pair the store returned for this very
        increment, so concurrent goals from other clients can't make it read a
        stale or mixed score.
        """
        update = (
            MatchUpdate()
            .increment_score(team)
            .append_event(MatchEvent(type="goal", team=team, time=utcnow()))
        )
        match = await self._guarded_update(
            match_id,
            {"status": MatchStatus.LIVE.value},
            update.to_mongo(),
            action="goal",
        )
        if match is None:
            return None

        red_score = int(match["red_team"]["score"])
        blue_score = int(match["blue_team"]["score"])
        winner = winning_team(red_score, blue_score)
        preview = None
        if winner is not None:
            preview = await self.complete_match(match_id, red_score, blue_score)
        return GoalOutcome(
            match=match,
            red_score=red_score,
            blue_score=blue_score,
            winner=winner,
            settlement=preview,
        )

    async def swap_roles(self, match_id: str, team: TeamColor) -> dict | None:
        event = MatchEvent(type="swap", team=team, time=utcnow())
        return await self._guarded_update(
            match_id,
            {"status": MatchStatus.LIVE.value},
            swap_roles_pipeline(team, event),
            action="swap",
        )

    async def complete_match(
        self,
        match_id: str,
        final_red_score: int | None = None,
        final_blue_score: int | None = None,
    ) -> Settlement | None:
        """Request the live -> completed transition.

        Returns the Elo preview computed from the caller's view of the match.
        Ratings themselves are only ever written by the settlement trigger;
        the preview is informational. Scores are written with ``$max`` so a
        late completion never rolls back a goal another client already counted.
        """
        current = MatchInDB.model_validate(await self.get_match(match_id))
        if current.status != MatchStatus.LIVE:
            logger.info("Ignored complete on match %s: status is %s", match_id, current.status.value)
            return None

        # The pair $max will leave in the store, not the caller's view of it.
        red_score = max(current.red_team.score, final_red_score or 0)
        blue_score = max(current.blue_team.score, final_blue_score or 0)
        if red_score == blue_score:
            logger.warning("Refusing to complete match %s on a tie (%d-%d)", match_id, red_score, blue_score)
            return None

        red_team = current.red_team.with_score(red_score)
        blue_team = current.blue_team.with_score(blue_score)
        ratings = await self.players.get_ratings(
            current.participants + red_team.players() + blue_team.players()
        )
        preview = settle(red_team, blue_team, ratings)

        update = (
            MatchUpdate()
            .set_status(MatchStatus.COMPLETED, "ended_at", utcnow())
            .raise_to(score_path("red"), red_score)
            .raise_to(score_path("blue"), blue_score)
        )
        completed = await self.db.matches.find_one_and_update(
            {"_id": to_object_id(match_id), "status": MatchStatus.LIVE.value},
            update.to_mongo(),
            return_document=ReturnDocument.AFTER,
        )
        if completed is None:
            logger.info("Match %s was completed concurrently; keeping the first completion", match_id)
            return None

        logger.info(
            "Match %s completed %d-%d (%s wins), projected elo changes %s",
            match_id, red_score, blue_score, preview.outcome, preview.changes,
        )
        return preview

    # ---------- Internals ----------

    async def _guarded_update(
        self,
        match_id: str,
        guard: dict[str, Any],
        update: dict[str, Any] | list[dict[str, Any]],
        *,
        action: str,
    ) -> dict | None:
        match = await self.db.matches.find_one_and_update(
            {"_id": to_object_id(match_id), **guard},
            update,
            return_document=ReturnDocument.AFTER,
        )
        if match is None:
            await self.get_match(match_id)
            logger.info("Ignored %s on match %s: guard not satisfied", action, match_id)
        return match


match_service = MatchService()
