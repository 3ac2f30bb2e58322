"""
backend/app/models/match.py

Purpose:
    Table-soccer match domain model: lifecycle status, the two teams with their
    attacker/defender slots, the activity event log and API request/response
    contracts. Slots hold a player id or ``None`` (empty); roster helpers scan
    them explicitly instead of relying on truthiness.

Dependencies:
    - pydantic
    - app.models.common.PyObjectId
    - app.utils
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from app.models.common import PyObjectId
from app.utils import as_utc

TeamColor = Literal["red", "blue"]
Role = Literal["attacker", "defender"]

TEAMS: tuple[TeamColor, TeamColor] = ("red", "blue")
ROLES: tuple[Role, Role] = ("attacker", "defender")


class MatchStatus(str, Enum):
    LOBBY = "lobby"
    LIVE = "live"
    COMPLETED = "completed"


def team_field(team: TeamColor) -> str:
    return f"{team}_team"


def slot_path(team: TeamColor, role: Role) -> str:
    return f"{team}_team.{role}"


def score_path(team: TeamColor) -> str:
    return f"{team}_team.score"


def slot_paths() -> list[tuple[TeamColor, Role, str]]:
    """All four slots as ``(team, role, dotted_path)``."""
    return [(team, role, slot_path(team, role)) for team in TEAMS for role in ROLES]


class Team(BaseModel):
    attacker: str | None = None
    defender: str | None = None
    score: int = Field(default=0, ge=0)

    def players(self) -> list[str]:
        """Occupied slots in attacker, defender order."""
        return [pid for pid in (self.attacker, self.defender) if pid is not None]

    def role_of(self, player_id: str) -> Role | None:
        if self.attacker is not None and self.attacker == player_id:
            return "attacker"
        if self.defender is not None and self.defender == player_id:
            return "defender"
        return None

    def is_empty(self) -> bool:
        return self.attacker is None and self.defender is None

    def with_score(self, score: int) -> Team:
        return self.model_copy(update={"score": score})


class MatchEvent(BaseModel):
    type: Literal["goal", "swap"]
    team: TeamColor
    time: datetime


class MatchInDB(BaseModel):
    """Match document as stored in MongoDB."""

    id: PyObjectId | None = Field(alias="_id", default=None)
    status: MatchStatus = MatchStatus.LOBBY
    participants: list[str] = Field(default_factory=list)
    pending_invitations: list[str] = Field(default_factory=list)
    red_team: Team = Field(default_factory=Team)
    blue_team: Team = Field(default_factory=Team)
    events: list[MatchEvent] = Field(default_factory=list)
    elo_changes: dict[str, int] | None = None
    created_by: str
    created_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    last_activity_at: datetime | None = None
    settled_at: datetime | None = None

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )


def new_match_doc(creator_id: str, now: datetime) -> dict[str, Any]:
    """Fresh lobby document: creator as sole participant, empty teams, 0-0."""
    return {
        "status": MatchStatus.LOBBY.value,
        "participants": [creator_id],
        "pending_invitations": [],
        "red_team": Team().model_dump(),
        "blue_team": Team().model_dump(),
        "events": [],
        "created_by": creator_id,
        "created_at": now,
        "last_activity_at": now,
    }


# ---------- Request bodies ----------

class AssignTeamRequest(BaseModel):
    player_id: str
    team: TeamColor
    role: Role


class SlotRequest(BaseModel):
    team: TeamColor
    role: Role


class TeamRequest(BaseModel):
    team: TeamColor


class CompleteMatchRequest(BaseModel):
    final_red_score: int | None = Field(default=None, ge=0)
    final_blue_score: int | None = Field(default=None, ge=0)


class InvitePlayerRequest(BaseModel):
    player_id: str


# ---------- Responses ----------

class MatchResponse(BaseModel):
    id: str
    status: MatchStatus
    participants: list[str]
    pending_invitations: list[str]
    red_team: Team
    blue_team: Team
    events: list[MatchEvent]
    elo_changes: dict[str, int] | None = None
    created_by: str
    created_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    last_activity_at: datetime | None = None


def db_to_response(doc: dict) -> MatchResponse:
    match = MatchInDB.model_validate(doc)
    return MatchResponse(
        id=str(doc["_id"]),
        status=match.status,
        participants=match.participants,
        pending_invitations=match.pending_invitations,
        red_team=match.red_team,
        blue_team=match.blue_team,
        events=match.events,
        elo_changes=match.elo_changes,
        created_by=match.created_by,
        created_at=as_utc(match.created_at),
        started_at=as_utc(match.started_at),
        ended_at=as_utc(match.ended_at),
        last_activity_at=as_utc(match.last_activity_at),
    )


class MatchActionResponse(BaseModel):
    """Outcome of a guarded action: ``applied`` is False when the guard rejected it."""
    applied: bool
    match: MatchResponse


class GoalResponse(MatchActionResponse):
    winner: TeamColor | None = None
    elo_preview: dict[str, int] | None = None


class CompletionResponse(BaseModel):
    applied: bool
    outcome: Literal["red", "blue", "draw"] | None = None
    elo_preview: dict[str, int] | None = None
