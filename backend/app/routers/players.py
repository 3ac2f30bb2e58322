"""
backend/app/routers/players.py

Purpose:
    Player profiles, the Elo leaderboard and per-player match history.

Dependencies:
    - app.services.player_service
    - app.services.match_service
"""

from fastapi import APIRouter, Depends, Query, status

from app.config import settings
from app.models.match import MatchResponse
from app.models.match import db_to_response as match_to_response
from app.models.user import ProfileCreate, UsernameUpdate, UserResponse, db_to_response
from app.services.match_service import match_service
from app.services.player_service import get_current_player_id, player_service

router = APIRouter(prefix="/api/players", tags=["players"])


@router.post("/me", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_profile(body: ProfileCreate, player_id: str = Depends(get_current_player_id)):
    """First sign-in: create the profile at the default rating (existing profiles are returned as is)."""
    return db_to_response(await player_service.ensure_profile(player_id, body.username))


@router.get("/me", response_model=UserResponse)
async def my_profile(player_id: str = Depends(get_current_player_id)):
    return db_to_response(await player_service.get_profile(player_id))


@router.patch("/me", response_model=UserResponse)
async def rename(body: UsernameUpdate, player_id: str = Depends(get_current_player_id)):
    return db_to_response(await player_service.update_username(player_id, body.username))


@router.get("/leaderboard", response_model=list[UserResponse])
async def leaderboard(limit: int = Query(settings.LEADERBOARD_LIMIT, ge=1, le=200)):
    return [db_to_response(doc) for doc in await player_service.leaderboard(limit)]


@router.get("/{player_id}", response_model=UserResponse)
async def get_player(player_id: str):
    return db_to_response(await player_service.get_profile(player_id))


@router.get("/{player_id}/matches", response_model=list[MatchResponse])
async def player_matches(player_id: str, limit: int = Query(settings.MATCH_HISTORY_LIMIT, ge=1, le=100)):
    return [match_to_response(m) for m in await match_service.list_player_matches(player_id, limit)]
