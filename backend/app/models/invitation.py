"""
backend/app/models/invitation.py

Purpose:
    Invitation and relationship records consumed by the lobby invite flow.
    Relationship documents are keyed by the sorted pair of player ids so the
    same two players always resolve to one record.

Dependencies:
    - pydantic
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from app.utils import as_utc


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class RelationshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"


class RelationshipInDB(BaseModel):
    users: list[str]
    status: RelationshipStatus = RelationshipStatus.PENDING
    sender_id: str
    trusts: dict[str, bool] = Field(default_factory=dict)
    updated_at: datetime | None = None

    def trusts_player(self, truster_id: str) -> bool:
        """Whether ``truster_id`` lets the other player pull them into lobbies."""
        return self.trusts.get(truster_id) is True


class InvitationInDB(BaseModel):
    match_id: str
    inviter_uid: str
    invitee_uid: str
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: datetime
    responded_at: datetime | None = None


class InviteOutcome(BaseModel):
    """Result of an invite: either joined directly or left pending."""
    match_id: str
    player_id: str
    auto_joined: bool
    invitation_id: str | None = None


class InvitationResponse(BaseModel):
    id: str
    match_id: str
    inviter_uid: str
    invitee_uid: str
    status: InvitationStatus
    created_at: datetime | None = None
    responded_at: datetime | None = None


def db_to_response(doc: dict) -> InvitationResponse:
    return InvitationResponse(
        id=str(doc["_id"]),
        match_id=str(doc.get("match_id") or ""),
        inviter_uid=str(doc.get("inviter_uid") or ""),
        invitee_uid=str(doc.get("invitee_uid") or ""),
        status=InvitationStatus(doc.get("status", InvitationStatus.PENDING.value)),
        created_at=as_utc(doc.get("created_at")),
        responded_at=as_utc(doc.get("responded_at")),
    )
