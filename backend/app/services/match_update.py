"""
backend/app/services/match_update.py

Purpose:
    Typed partial updates for match documents. ``MatchUpdate`` accumulates
    named field changes and renders them as one MongoDB update document, so a
    logical move (clear old slot + fill new slot, score + event) is a single
    atomic write. Slot moves and role swaps that depend on current slot values
    are rendered as aggregation-pipeline updates: the server evaluates them
    against the live document, which removes the read-modify-write window.

Dependencies:
    - app.models.match
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from app.models.match import (
    MatchEvent,
    MatchStatus,
    Role,
    TeamColor,
    score_path,
    slot_path,
    slot_paths,
    team_field,
)


class MatchUpdate:
    """Builder for a single atomic ``update_one``/``find_one_and_update`` payload."""

    def __init__(self) -> None:
        self._ops: dict[str, dict[str, Any]] = {}

    def _put(self, operator: str, path: str, value: Any) -> MatchUpdate:
        self._ops.setdefault(operator, {})[path] = value
        return self

    def set(self, path: str, value: Any) -> MatchUpdate:
        return self._put("$set", path, value)

    def set_slot(self, team: TeamColor, role: Role, player_id: str | None) -> MatchUpdate:
        return self.set(slot_path(team, role), player_id)

    def clear_slot(self, team: TeamColor, role: Role) -> MatchUpdate:
        return self.set_slot(team, role, None)

    def set_status(self, status: MatchStatus, stamp_field: str, now: datetime) -> MatchUpdate:
        self.set("status", status.value)
        return self.set(stamp_field, now)

    def increment(self, path: str, amount: int = 1) -> MatchUpdate:
        return self._put("$inc", path, amount)

    def increment_score(self, team: TeamColor) -> MatchUpdate:
        return self.increment(score_path(team), 1)

    def raise_to(self, path: str, value: Any) -> MatchUpdate:
        """``$max``: never lowers the stored value."""
        return self._put("$max", path, value)

    def append_event(self, event: MatchEvent) -> MatchUpdate:
        return self._put("$push", "events", event.model_dump())

    def add_to_set(self, field: str, value: Any) -> MatchUpdate:
        return self._put("$addToSet", field, value)

    def pull(self, field: str, value: Any) -> MatchUpdate:
        return self._put("$pull", field, value)

    def touch(self, now: datetime) -> MatchUpdate:
        return self.set("last_activity_at", now)

    def fields(self) -> set[str]:
        return {path for changes in self._ops.values() for path in changes}

    def is_empty(self) -> bool:
        return not self._ops

    def to_mongo(self) -> dict[str, dict[str, Any]]:
        return {operator: dict(changes) for operator, changes in self._ops.items()}


def _field_ref(path: str) -> str:
    return f"${path}"


def assign_slot_pipeline(player_id: str, team: TeamColor, role: Role, now: datetime) -> list[dict[str, Any]]:
    """Move ``player_id`` into ``team.role`` in one server-side evaluated write.

    Stage one empties every slot currently holding the player; stage two fills
    the target. Both stages run against the same document version.
    """
    player = {"$literal": player_id}
    clears = {
        path: {"$cond": [{"$eq": [_field_ref(path), player]}, None, _field_ref(path)]}
        for _, _, path in slot_paths()
    }
    return [
        {"$set": clears},
        {"$set": {slot_path(team, role): player, "last_activity_at": now}},
    ]


def swap_roles_pipeline(team: TeamColor, event: MatchEvent) -> list[dict[str, Any]]:
    """Exchange attacker/defender (empty slots included) and log the swap."""
    base = team_field(team)
    return [
        {
            "$set": {
                f"{base}.attacker": _field_ref(f"{base}.defender"),
                f"{base}.defender": _field_ref(f"{base}.attacker"),
                "events": {
                    "$concatArrays": [
                        {"$ifNull": ["$events", []]},
                        [{"$literal": event.model_dump()}],
                    ]
                },
            }
        }
    ]
