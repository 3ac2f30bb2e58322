"""
backend/app/routers/invitations.py

Purpose:
    The invitee's side of lobby invitations: list what is pending and answer it.

Dependencies:
    - app.services.invitation_service
"""

from fastapi import APIRouter, Depends

from app.models.invitation import InvitationResponse, db_to_response
from app.services.invitation_service import invitation_service
from app.services.player_service import get_current_player_id

router = APIRouter(prefix="/api/invitations", tags=["invitations"])


@router.get("/", response_model=list[InvitationResponse])
async def pending_invitations(player_id: str = Depends(get_current_player_id)):
    docs = await invitation_service.list_pending_invitations(player_id)
    return [db_to_response(d) for d in docs]


@router.post("/{invitation_id}/accept")
async def accept_invitation(invitation_id: str, player_id: str = Depends(get_current_player_id)):
    """Join the lobby. ``applied`` is False when the invitation was already answered."""
    return {"applied": await invitation_service.accept_invitation(invitation_id, player_id)}


@router.post("/{invitation_id}/decline")
async def decline_invitation(invitation_id: str, player_id: str = Depends(get_current_player_id)):
    return {"applied": await invitation_service.decline_invitation(invitation_id, player_id)}
