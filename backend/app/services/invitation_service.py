"""
backend/app/services/invitation_service.py

Purpose:
    Lobby invitations. A trusted invitee (their relationship record says they
    trust the inviter) joins the lobby directly; everyone else gets a pending
    invitation. Every path that touches more than one document commits through
    a WriteBatch so the match and the invitation never disagree.

Dependencies:
    - app.database
    - app.services.write_batch
    - app.models.invitation
"""

from __future__ import annotations

import logging

from bson import ObjectId
from fastapi import HTTPException, status

import app.database as _db
from app.models.common import to_object_id
from app.models.invitation import InvitationStatus, InviteOutcome, RelationshipInDB
from app.models.match import MatchStatus
from app.services.match_update import MatchUpdate
from app.services.write_batch import BatchConflict, WriteBatch
from app.utils import utcnow

logger = logging.getLogger("tablekick.invitation_service")


def relationship_id(player_a: str, player_b: str) -> str:
    """Pair key independent of who initiated: sorted ids joined with ``_``."""
    low, high = sorted((player_a, player_b))
    return f"{low}_{high}"


class InvitationService:
    def __init__(self, database=None) -> None:
        self._db = database

    @property
    def db(self):
        resolved = self._db if self._db is not None else _db.db
        if resolved is None:
            raise RuntimeError("Database is not initialized yet.")
        return resolved

    async def invitee_trusts(self, invitee_id: str, inviter_id: str) -> bool:
        doc = await self.db.relationships.find_one({"_id": relationship_id(invitee_id, inviter_id)})
        if not doc:
            return False
        return RelationshipInDB.model_validate(doc).trusts_player(invitee_id)

    async def invite_player(
        self,
        match_id: str,
        player_id: str,
        inviter_id: str,
        *,
        trusted: bool | None = None,
    ) -> InviteOutcome | None:
        """Add ``player_id`` to the lobby or leave them a pending invitation.

        ``trusted`` comes from the relationship collaborator; when omitted it is
        looked up here. Returns ``None`` when the lobby no longer accepts invites.
        """
        oid = to_object_id(match_id)
        match = await self.db.matches.find_one({"_id": oid}, {"status": 1, "participants": 1})
        if not match:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Match not found.")
        if match.get("status") != MatchStatus.LOBBY.value:
            logger.info("Ignored invite of %s to match %s: not a lobby", player_id, match_id)
            return None
        if player_id in (match.get("participants") or []):
            return InviteOutcome(match_id=str(oid), player_id=player_id, auto_joined=True)

        if trusted is None:
            trusted = await self.invitee_trusts(player_id, inviter_id)
        now = utcnow()
        lobby_guard = {"_id": oid, "status": MatchStatus.LOBBY.value}

        if trusted:
            update = MatchUpdate().add_to_set("participants", player_id).touch(now)
            result = await self.db.matches.update_one(lobby_guard, update.to_mongo())
            if result.matched_count == 0:
                return None
            logger.info("Player %s auto-joined match %s (trusts %s)", player_id, match_id, inviter_id)
            return InviteOutcome(match_id=str(oid), player_id=player_id, auto_joined=True)

        invitation_id = ObjectId()
        batch = WriteBatch(self._db)
        batch.update(
            "matches",
            lobby_guard,
            MatchUpdate().add_to_set("pending_invitations", player_id).touch(now).to_mongo(),
            require_match=True,
        )
        batch.insert("invitations", {
            "_id": invitation_id,
            "match_id": str(oid),
            "inviter_uid": inviter_id,
            "invitee_uid": player_id,
            "status": InvitationStatus.PENDING.value,
            "created_at": now,
        })
        try:
            await batch.commit()
        except BatchConflict:
            logger.info("Invite of %s to match %s raced with lobby start/delete", player_id, match_id)
            return None
        logger.info("Invitation %s created: %s -> %s for match %s", invitation_id, inviter_id, player_id, match_id)
        return InviteOutcome(
            match_id=str(oid),
            player_id=player_id,
            auto_joined=False,
            invitation_id=str(invitation_id),
        )

    async def list_pending_invitations(self, player_id: str) -> list[dict]:
        return await self.db.invitations.find(
            {"invitee_uid": player_id, "status": InvitationStatus.PENDING.value}
        ).sort("created_at", -1).to_list(length=50)

    async def accept_invitation(self, invitation_id: str, player_id: str) -> bool:
        invitation = await self._get_own_pending(invitation_id, player_id)
        if invitation is None:
            return False
        update = (
            MatchUpdate()
            .add_to_set("participants", player_id)
            .pull("pending_invitations", player_id)
            .touch(utcnow())
        )
        if not await self._respond(invitation, InvitationStatus.ACCEPTED, update):
            return False
        logger.info("Player %s accepted invitation %s", player_id, invitation_id)
        return True

    async def decline_invitation(self, invitation_id: str, player_id: str) -> bool:
        invitation = await self._get_own_pending(invitation_id, player_id)
        if invitation is None:
            return False
        if not await self._respond(invitation, InvitationStatus.DECLINED, MatchUpdate().pull("pending_invitations", player_id)):
            return False
        logger.info("Player %s declined invitation %s", player_id, invitation_id)
        return True

    async def _get_own_pending(self, invitation_id: str, player_id: str) -> dict | None:
        invitation = await self.db.invitations.find_one({"_id": to_object_id(invitation_id)})
        if not invitation:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Invitation not found.")
        if invitation.get("invitee_uid") != player_id:
            raise HTTPException(status.HTTP_403_FORBIDDEN, "This invitation is addressed to another player.")
        if invitation.get("status") != InvitationStatus.PENDING.value:
            return None
        return invitation

    async def _respond(self, invitation: dict, new_status: InvitationStatus, match_update: MatchUpdate) -> bool:
        batch = WriteBatch(self._db)
        batch.update(
            "invitations",
            {"_id": invitation["_id"], "status": InvitationStatus.PENDING.value},
            {"$set": {"status": new_status.value, "responded_at": utcnow()}},
            require_match=True,
        )
        batch.update("matches", {"_id": to_object_id(invitation["match_id"])}, match_update.to_mongo())
        try:
            await batch.commit()
        except BatchConflict:
            # Answered concurrently from another client; the first answer stands.
            logger.info("Invitation %s was already answered", invitation["_id"])
            return False
        return True


invitation_service = InvitationService()
