"""
Invitation manager: invite players into a specific team of a pending match.

Expiry is lazy: an invitation older than its expires_at is rejected when
someone tries to act on it, no background job is involved.
"""

import logging
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_backend.database.models import (
    Currency,
    InvitationStatus,
    MatchInvitation,
    MatchSession,
    MatchSessionStatus,
    User,
)
from shuttle_backend.services import match_session_service
from shuttle_backend.services.errors import (
    AlreadyParticipantError,
    ConcurrentModificationError,
    DuplicateInvitationError,
    ForbiddenError,
    InvalidInvitationStateError,
    InvalidSessionStateError,
    InvitationExpiredError,
    InvitationNotFoundError,
    SessionFullError,
    SessionNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from shuttle_backend.services.session_query_service import load_participants, players_per_team
from shuttle_backend.utils.constants import INVITATION_TTL_HOURS
from shuttle_backend.utils.datetime_utils import ensure_aware, isoformat_or_none, utcnow

logger = logging.getLogger(__name__)

ACTIONS = ("accept", "decline", "cancel")


def is_expired(invitation: MatchInvitation, now=None) -> bool:
    now = now or utcnow()
    return now > ensure_aware(invitation.expires_at)


def _profile(user: Optional[User]) -> Optional[Dict]:
    if user is None:
        return None
    return {
        "id": user.id,
        "nickname": user.nickname,
        "profile_image": user.profile_image,
        "gender": user.gender.value if user.gender else None,
    }


def _format_invitation(
    invitation: MatchInvitation, users: Dict[str, User], sessions: Dict[int, MatchSession]
) -> Dict:
    match_session = sessions.get(invitation.session_id)
    return {
        "id": invitation.id,
        "session_id": invitation.session_id,
        "team": invitation.team,
        "status": invitation.status.value,
        "message": invitation.message,
        "created_at": isoformat_or_none(invitation.created_at),
        "expires_at": isoformat_or_none(invitation.expires_at),
        "responded_at": isoformat_or_none(invitation.responded_at),
        "is_expired": is_expired(invitation),
        "inviter": _profile(users.get(invitation.inviter_id)),
        "invitee": _profile(users.get(invitation.invitee_id)),
        "session": {
            "id": match_session.id,
            "match_type": match_session.match_type.value,
            "status": match_session.status.value,
            "session_date": isoformat_or_none(match_session.session_date),
            "location": match_session.location,
        } if match_session else None,
    }


async def _format_many(session: AsyncSession, invitations: List[MatchInvitation]) -> List[Dict]:
    user_ids = {i.inviter_id for i in invitations} | {i.invitee_id for i in invitations}
    session_ids = {i.session_id for i in invitations}
    users, sessions = {}, {}
    if user_ids:
        result = await session.execute(select(User).where(User.id.in_(user_ids)))
        users = {u.id: u for u in result.scalars().all()}
    if session_ids:
        result = await session.execute(select(MatchSession).where(MatchSession.id.in_(session_ids)))
        sessions = {s.id: s for s in result.scalars().all()}
    return [_format_invitation(i, users, sessions) for i in invitations]


async def create_invitation(
    session: AsyncSession,
    session_id: int,
    inviter_id: str,
    invitee_id: str,
    team: int,
    message: Optional[str] = None,
) -> Dict:
    """
    Invite a player to a team of a pending session.

    Args:
        session: Database session
        session_id: Match session to invite into
        inviter_id: Creator or current participant sending the invite
        invitee_id: Player being invited
        team: Team the invitee would join (1 or 2)
        message: Optional note shown to the invitee

    Returns:
        Formatted invitation dict

    Raises:
        ForbiddenError: Inviter is neither creator nor participant
        InvalidSessionStateError: Session is not PENDING
        AlreadyParticipantError: Invitee already holds a seat
        DuplicateInvitationError: An outstanding invite already exists
        SessionFullError: The requested team has no free seat
        ValidationError: Bad team, self-invite or gender mismatch
    """
    if team not in (1, 2):
        raise ValidationError("Team must be 1 or 2")
    if invitee_id == inviter_id:
        raise ValidationError("You cannot invite yourself")

    match_session = await match_session_service.load_session(session, session_id)
    _require_pending(match_session)

    roster = (await load_participants(session, [session_id]))[session_id]
    roster_ids = {p.user_id for p in roster}
    if inviter_id != match_session.creator_id and inviter_id not in roster_ids:
        raise ForbiddenError("Only the creator or participants can send invitations")

    invitee = await session.get(User, invitee_id)
    if invitee is None:
        raise UserNotFoundError(invitee_id)
    if invitee_id in roster_ids:
        raise AlreadyParticipantError("Player is already a participant of this match")

    team_members = [p.user_id for p in roster if p.team == team]
    if len(team_members) >= players_per_team(match_session.match_type):
        raise SessionFullError(f"Team {team} is full")
    teammates = [await session.get(User, uid) for uid in team_members]
    match_session_service.check_gender(match_session.match_type, invitee, teammates)

    now = utcnow()
    existing = await session.execute(
        select(MatchInvitation).where(
            MatchInvitation.session_id == session_id,
            MatchInvitation.inviter_id == inviter_id,
            MatchInvitation.invitee_id == invitee_id,
            MatchInvitation.status == InvitationStatus.PENDING,
        )
    )
    if any(not is_expired(i, now) for i in existing.scalars().all()):
        raise DuplicateInvitationError()

    invitation = MatchInvitation(
        session_id=session_id,
        inviter_id=inviter_id,
        invitee_id=invitee_id,
        team=team,
        status=InvitationStatus.PENDING,
        message=message,
        created_at=now,
        expires_at=now + timedelta(hours=INVITATION_TTL_HOURS),
    )
    session.add(invitation)
    await session.flush()
    await session.refresh(invitation)

    logger.info(
        f"User {inviter_id} invited {invitee_id} to team {team} of session {session_id}"
    )
    return (await _format_many(session, [invitation]))[0]


def _require_pending(match_session: MatchSession) -> None:
    if match_session.status != MatchSessionStatus.PENDING:
        raise InvalidSessionStateError(
            f"Cannot invite players to a match that is {match_session.status.value}"
        )


async def respond_to_invitation(
    session: AsyncSession,
    invitation_id: int,
    user_id: str,
    action: str,
    entry_currency: str = Currency.POINTS.value,
) -> Dict:
    """
    Accept, decline or cancel an invitation.

    The invitee accepts or declines, the inviter cancels. Accepting joins the
    session on the invited team without the session password; if the join
    fails the invitation stays PENDING.

    Raises:
        ForbiddenError: Caller may not perform this action
        InvitationExpiredError: Invitation is past its expiry
        InvalidInvitationStateError: Invitation is no longer PENDING
    """
    if action not in ACTIONS:
        raise ValidationError(f"Invalid action '{action}'. Must be one of: {', '.join(ACTIONS)}")

    result = await session.execute(
        select(MatchInvitation)
        .where(MatchInvitation.id == invitation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise InvitationNotFoundError(invitation_id)

    if action == "cancel" and invitation.inviter_id != user_id:
        raise ForbiddenError("Only the inviter can cancel this invitation")
    if action in ("accept", "decline") and invitation.invitee_id != user_id:
        raise ForbiddenError(f"Only the invitee can {action} this invitation")

    if is_expired(invitation):
        raise InvitationExpiredError()
    if invitation.status != InvitationStatus.PENDING:
        raise InvalidInvitationStateError(
            f"Invitation has already been {invitation.status.value.lower()}"
        )

    session_view = None
    if action == "accept":
        session_view = await match_session_service.join_session(
            session,
            invitation.session_id,
            user_id,
            team=invitation.team,
            entry_currency=entry_currency,
            via_invitation=True,
        )

    new_status = {
        "accept": InvitationStatus.ACCEPTED,
        "decline": InvitationStatus.DECLINED,
        "cancel": InvitationStatus.CANCELLED,
    }[action]
    updated = await session.execute(
        update(MatchInvitation)
        .where(
            MatchInvitation.id == invitation_id,
            MatchInvitation.status == InvitationStatus.PENDING,
        )
        .values(status=new_status, responded_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if updated.rowcount != 1:
        raise ConcurrentModificationError(f"Invitation {invitation_id} changed concurrently")
    await session.refresh(invitation)

    logger.info(f"Invitation {invitation_id} {new_status.value.lower()} by {user_id}")
    formatted = (await _format_many(session, [invitation]))[0]
    formatted["match_session"] = session_view
    return formatted


async def list_invitations(
    session: AsyncSession,
    user_id: str,
    invitation_type: str = "received",
    status: Optional[str] = None,
) -> List[Dict]:
    """List invitations the user received or sent, newest first."""
    if invitation_type not in ("received", "sent"):
        raise ValidationError("Invitation type must be 'received' or 'sent'")
    column = MatchInvitation.invitee_id if invitation_type == "received" else MatchInvitation.inviter_id
    query = select(MatchInvitation).where(column == user_id)
    if status:
        try:
            query = query.where(MatchInvitation.status == InvitationStatus(status))
        except ValueError:
            raise ValidationError(f"Invalid invitation status '{status}'")
    result = await session.execute(query.order_by(MatchInvitation.id.desc()))
    return await _format_many(session, list(result.scalars().all()))


async def list_session_invitations(
    session: AsyncSession, session_id: int, requester_id: str
) -> List[Dict]:
    """
    All invitations for one session, newest first.

    Only the creator and current participants may see them.
    """
    match_session = await session.get(MatchSession, session_id)
    if match_session is None:
        raise SessionNotFoundError(session_id)
    roster = (await load_participants(session, [session_id]))[session_id]
    if requester_id != match_session.creator_id and requester_id not in {p.user_id for p in roster}:
        raise ForbiddenError("Only the creator or participants can view this session's invitations")

    result = await session.execute(
        select(MatchInvitation)
        .where(MatchInvitation.session_id == session_id)
        .order_by(MatchInvitation.id.desc())
    )
    return await _format_many(session, list(result.scalars().all()))
