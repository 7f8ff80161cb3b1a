"""Rating and leaderboard route handlers."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_backend.api.auth_dependencies import get_current_user
from shuttle_backend.api.routes import to_http_exception
from shuttle_backend.database.db import get_db_session
from shuttle_backend.services import rating_service

router = APIRouter()


@router.get("/api/leaderboard/{match_type}")
async def get_leaderboard(
    match_type: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Players ranked by rating for one match type, or ALL."""
    try:
        return await rating_service.get_leaderboard(
            session, match_type.upper(), limit=limit, offset=offset
        )
    except Exception as e:
        raise to_http_exception(e, "fetching leaderboard")


@router.get("/api/users/{user_id}/ratings")
async def get_user_ratings(
    user_id: str,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """A player's rating per match type with recent history."""
    try:
        return await rating_service.get_user_ratings(session, user_id)
    except Exception as e:
        raise to_http_exception(e, "fetching user ratings")
