"""Match session route handlers."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_backend.api.auth_dependencies import get_current_user
from shuttle_backend.api.routes import limiter, to_http_exception
from shuttle_backend.database import db
from shuttle_backend.database.db import get_db_session
from shuttle_backend.models.schemas import (
    CompleteSessionRequest,
    InvitationCreate,
    JoinSessionRequest,
    MatchSessionCreate,
)
from shuttle_backend.services import (
    invitation_service,
    match_session_service,
    session_query_service,
)

router = APIRouter()


@router.post("/api/matches/sessions", status_code=201)
@limiter.limit("20/minute")
async def create_match_session(
    request: Request,
    payload: MatchSessionCreate,
    user: dict = Depends(get_current_user),
):
    """Create a match session; the creation cost is charged immediately."""
    try:
        return await db.run_transaction(
            match_session_service.create_session,
            user["id"],
            **payload.model_dump(),
        )
    except Exception as e:
        raise to_http_exception(e, "creating match session")


@router.get("/api/matches/sessions")
async def list_match_sessions(
    match_type: Optional[str] = Query(None, alias="matchType"),
    status: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List match sessions, newest first."""
    try:
        return await session_query_service.list_sessions(
            session, user["id"], match_type=match_type, status=status, limit=limit, offset=offset
        )
    except Exception as e:
        raise to_http_exception(e, "listing match sessions")


@router.get("/api/matches/sessions/my-sessions")
async def get_my_sessions(
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Pending sessions the current user created or joined."""
    try:
        sessions = await session_query_service.get_my_pending_sessions(session, user["id"])
        return {"sessions": sessions, "current_user_id": user["id"]}
    except Exception as e:
        raise to_http_exception(e, "fetching my sessions")


@router.get("/api/matches/sessions/history")
async def get_match_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Completed matches of the current user with win/loss totals."""
    try:
        return await session_query_service.get_match_history(
            session, user["id"], limit=limit, offset=offset
        )
    except Exception as e:
        raise to_http_exception(e, "fetching match history")


@router.get("/api/matches/sessions/{session_id}")
async def get_match_session(
    session_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Session detail with roster and current_user_id."""
    try:
        return await session_query_service.get_session_view(session, session_id, user["id"])
    except Exception as e:
        raise to_http_exception(e, "fetching match session")


@router.post("/api/matches/sessions/{session_id}/join")
async def join_match_session(
    session_id: int,
    payload: JoinSessionRequest,
    user: dict = Depends(get_current_user),
):
    """Join a session, paying the entry fee and escrowing any bet."""
    try:
        return await db.run_transaction(
            match_session_service.join_session,
            session_id,
            user["id"],
            team=payload.team,
            password=payload.password,
            entry_currency=payload.entry_currency,
        )
    except Exception as e:
        raise to_http_exception(e, "joining match session")


@router.post("/api/matches/sessions/{session_id}/start")
async def start_match_session(session_id: int, user: dict = Depends(get_current_user)):
    """Start a full session (creator only)."""
    try:
        return await db.run_transaction(match_session_service.start_session, session_id, user["id"])
    except Exception as e:
        raise to_http_exception(e, "starting match session")


@router.post("/api/matches/sessions/{session_id}/complete")
async def complete_match_session(
    session_id: int,
    payload: CompleteSessionRequest,
    user: dict = Depends(get_current_user),
):
    """Report the result; settles bets, bonuses and ratings."""
    try:
        return await db.run_transaction(
            match_session_service.complete_session,
            session_id,
            user["id"],
            payload.result,
            team1_score=payload.team1_score,
            team2_score=payload.team2_score,
        )
    except Exception as e:
        raise to_http_exception(e, "completing match session")


@router.post("/api/matches/sessions/{session_id}/cancel")
async def cancel_match_session(session_id: int, user: dict = Depends(get_current_user)):
    """Cancel a pending session and refund everything it charged (creator only)."""
    try:
        return await db.run_transaction(match_session_service.cancel_session, session_id, user["id"])
    except Exception as e:
        raise to_http_exception(e, "cancelling match session")


@router.post("/api/matches/sessions/{session_id}/invite", status_code=201)
@limiter.limit("30/minute")
async def invite_to_match_session(
    request: Request,
    session_id: int,
    payload: InvitationCreate,
    user: dict = Depends(get_current_user),
):
    """Invite a player to a team of this session."""
    try:
        return await db.run_transaction(
            invitation_service.create_invitation,
            session_id,
            user["id"],
            payload.invitee_id,
            payload.team,
            payload.message,
        )
    except Exception as e:
        raise to_http_exception(e, "sending invitation")


@router.get("/api/matches/sessions/{session_id}/invite")
async def get_session_invitations(
    session_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Invitations sent for this session."""
    try:
        invitations = await invitation_service.list_session_invitations(
            session, session_id, user["id"]
        )
        return {"invitations": invitations}
    except Exception as e:
        raise to_http_exception(e, "fetching session invitations")
