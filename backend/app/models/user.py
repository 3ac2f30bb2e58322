from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_ELO = 1000


class UserInDB(BaseModel):
    """Player profile as stored in MongoDB (``_id`` is the player id)."""
    username: str
    elo: int = DEFAULT_ELO
    matches_played: int = Field(default=0, ge=0)
    wins: int = Field(default=0, ge=0)
    losses: int = Field(default=0, ge=0)
    draws: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None


class ProfileCreate(BaseModel):
    """Request body for creating the caller's profile on first sign-in."""
    username: str

    @field_validator("username")
    @classmethod
    def username_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Username must not be empty.")
        if len(v) > 32:
            raise ValueError("Username must be at most 32 characters long.")
        return v


class UsernameUpdate(ProfileCreate):
    """Request body for renaming the caller's profile."""


class UserResponse(BaseModel):
    """Public profile returned to clients."""
    uid: str
    username: str
    elo: int
    matches_played: int
    wins: int
    losses: int
    draws: int = 0
    win_rate: float = 0.0


def db_to_response(doc: dict) -> UserResponse:
    played = int(doc.get("matches_played", 0) or 0)
    wins = int(doc.get("wins", 0) or 0)
    return UserResponse(
        uid=str(doc["_id"]),
        username=str(doc.get("username") or ""),
        elo=int(doc.get("elo", DEFAULT_ELO)),
        matches_played=played,
        wins=wins,
        losses=int(doc.get("losses", 0) or 0),
        draws=int(doc.get("draws", 0) or 0),
        win_rate=round(wins / played, 4) if played else 0.0,
    )
