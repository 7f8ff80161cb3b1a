"""Invitation route handlers."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_backend.api.auth_dependencies import get_current_user
from shuttle_backend.api.routes import to_http_exception
from shuttle_backend.database import db
from shuttle_backend.database.db import get_db_session
from shuttle_backend.models.schemas import InvitationAction
from shuttle_backend.services import invitation_service

router = APIRouter()


@router.get("/api/invitations")
async def get_invitations(
    type: str = Query("received"),
    status: Optional[str] = Query(None),
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Invitations the current user received (default) or sent."""
    try:
        invitations = await invitation_service.list_invitations(
            session, user["id"], invitation_type=type, status=status
        )
        return {"invitations": invitations}
    except Exception as e:
        raise to_http_exception(e, "fetching invitations")


@router.patch("/api/invitations/{invitation_id}")
async def respond_to_invitation(
    invitation_id: int,
    payload: InvitationAction,
    user: dict = Depends(get_current_user),
):
    """Accept or decline (invitee) or cancel (inviter) an invitation."""
    try:
        return await db.run_transaction(
            invitation_service.respond_to_invitation,
            invitation_id,
            user["id"],
            payload.action,
            entry_currency=payload.entry_currency,
        )
    except Exception as e:
        raise to_http_exception(e, "responding to invitation")
