"""
backend/app/routers/matches.py

Purpose:
    HTTP surface of the match state machine for the UI: lobby management,
    live scoring and completion. Guard rejections are not errors here either;
    the response says whether the action was applied and carries the current
    match so the client can re-render.

Dependencies:
    - app.services.match_service
    - app.services.invitation_service
    - app.models.match
"""

import logging

from fastapi import APIRouter, Depends, Query, status

from app.config import settings
from app.models.invitation import InviteOutcome
from app.models.match import (
    AssignTeamRequest,
    CompleteMatchRequest,
    CompletionResponse,
    GoalResponse,
    InvitePlayerRequest,
    MatchActionResponse,
    MatchResponse,
    SlotRequest,
    TeamRequest,
    db_to_response,
)
from app.services.invitation_service import invitation_service
from app.services.match_service import match_service
from app.services.player_service import get_current_player_id

logger = logging.getLogger("tablekick.matches")

router = APIRouter(prefix="/api/matches", tags=["matches"])


async def _action_response(match_id: str, updated: dict | None) -> MatchActionResponse:
    if updated is not None:
        return MatchActionResponse(applied=True, match=db_to_response(updated))
    current = await match_service.get_match(match_id)
    return MatchActionResponse(applied=False, match=db_to_response(current))


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_match(player_id: str = Depends(get_current_player_id)):
    """Open a new lobby with the caller as its creator and first participant."""
    match_id = await match_service.create_match(player_id)
    return {"id": match_id}


@router.get("/mine", response_model=list[MatchResponse])
async def my_matches(
    limit: int = Query(settings.MATCH_HISTORY_LIMIT, ge=1, le=100),
    player_id: str = Depends(get_current_player_id),
):
    matches = await match_service.list_player_matches(player_id, limit)
    return [db_to_response(m) for m in matches]


@router.get("/{match_id}", response_model=MatchResponse)
async def get_match(match_id: str):
    return db_to_response(await match_service.get_match(match_id))


@router.delete("/{match_id}")
async def delete_lobby(match_id: str, _player_id: str = Depends(get_current_player_id)):
    """Lobby cleanup, issued by any watching client once the lobby expired."""
    return {"deleted": await match_service.delete_lobby(match_id)}


@router.post("/{match_id}/assign", response_model=MatchActionResponse)
async def assign_to_team(
    match_id: str,
    body: AssignTeamRequest,
    _player_id: str = Depends(get_current_player_id),
):
    updated = await match_service.assign_to_team(match_id, body.player_id, body.team, body.role)
    return await _action_response(match_id, updated)


@router.post("/{match_id}/remove", response_model=MatchActionResponse)
async def remove_from_team(
    match_id: str,
    body: SlotRequest,
    _player_id: str = Depends(get_current_player_id),
):
    updated = await match_service.remove_from_team(match_id, body.team, body.role)
    return await _action_response(match_id, updated)


@router.post("/{match_id}/invite", response_model=InviteOutcome | None)
async def invite_player(
    match_id: str,
    body: InvitePlayerRequest,
    player_id: str = Depends(get_current_player_id),
):
    return await invitation_service.invite_player(match_id, body.player_id, player_id)


@router.post("/{match_id}/start", response_model=MatchActionResponse)
async def start_match(match_id: str, player_id: str = Depends(get_current_player_id)):
    updated = await match_service.start_match(match_id, player_id)
    return await _action_response(match_id, updated)


@router.post("/{match_id}/goal", response_model=GoalResponse)
async def add_goal(
    match_id: str,
    body: TeamRequest,
    _player_id: str = Depends(get_current_player_id),
):
    outcome = await match_service.add_goal(match_id, body.team)
    if outcome is None:
        current = await match_service.get_match(match_id)
        return GoalResponse(applied=False, match=db_to_response(current))
    match = outcome.match
    if outcome.winner is not None:
        # The goal response predates completion; show the completed state.
        match = await match_service.get_match(match_id)
    return GoalResponse(
        applied=True,
        match=db_to_response(match),
        winner=outcome.winner,
        elo_preview=outcome.settlement.changes if outcome.settlement else None,
    )


@router.post("/{match_id}/swap", response_model=MatchActionResponse)
async def swap_roles(
    match_id: str,
    body: TeamRequest,
    _player_id: str = Depends(get_current_player_id),
):
    updated = await match_service.swap_roles(match_id, body.team)
    return await _action_response(match_id, updated)


@router.post("/{match_id}/complete", response_model=CompletionResponse)
async def complete_match(
    match_id: str,
    body: CompleteMatchRequest | None = None,
    _player_id: str = Depends(get_current_player_id),
):
    body = body or CompleteMatchRequest()
    preview = await match_service.complete_match(match_id, body.final_red_score, body.final_blue_score)
    if preview is None:
        return CompletionResponse(applied=False)
    return CompletionResponse(applied=True, outcome=preview.outcome, elo_preview=preview.changes)
