"""
Read model for match sessions.

Builds the session projection the client renders: session fields, roster by
team with minimal player profiles, and viewer-specific flags computed from
the authenticated user.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_backend.database.models import (
    MatchParticipant,
    MatchSession,
    MatchSessionStatus,
    MatchType,
    User,
)
from shuttle_backend.services.errors import SessionNotFoundError, ValidationError
from shuttle_backend.utils.constants import (
    DEFAULT_PAGE_SIZE,
    DOUBLES_MATCH_TYPES,
    MAX_PAGE_SIZE,
    SINGLES_MATCH_TYPES,
)
from shuttle_backend.utils.datetime_utils import isoformat_or_none


def players_per_team(match_type: MatchType) -> int:
    """Singles put one player on each side, doubles two."""
    value = MatchType(match_type).value
    if value in SINGLES_MATCH_TYPES:
        return 1
    if value in DOUBLES_MATCH_TYPES:
        return 2
    raise ValidationError(f"Unknown match type {match_type}")


def max_players(match_type: MatchType) -> int:
    return players_per_team(match_type) * 2


def _profile(user: Optional[User]) -> Optional[Dict]:
    if user is None:
        return None
    return {"id": user.id, "nickname": user.nickname, "profile_image": user.profile_image}


def _format_participant(participant: MatchParticipant, user: Optional[User]) -> Dict:
    return {
        "id": participant.id,
        "user_id": participant.user_id,
        "team": participant.team,
        "slot": participant.slot,
        "entry_currency": participant.entry_currency.value,
        "entry_fee_points_paid": participant.entry_fee_points_paid,
        "entry_fee_feathers_paid": participant.entry_fee_feathers_paid,
        "bet_amount_paid": participant.bet_amount_paid,
        "entry_fee_refunded": participant.entry_fee_refunded,
        "rating_before": participant.rating_before,
        "rating_after": participant.rating_after,
        "rating_change": participant.rating_change,
        "points_earned": participant.points_earned,
        "result_confirmed": participant.result_confirmed,
        "user": _profile(user),
    }


def format_session(
    match_session: MatchSession,
    participants: Iterable[MatchParticipant],
    users: Dict[str, User],
    current_user_id: Optional[str] = None,
) -> Dict:
    """
    Project a session and its roster into a response dict.

    The password hash never leaves this module; clients only learn whether a
    password is required.
    """
    per_team = players_per_team(match_session.match_type)
    formatted = [_format_participant(p, users.get(p.user_id)) for p in participants]
    teams = {
        "1": [p for p in formatted if p["team"] == 1],
        "2": [p for p in formatted if p["team"] == 2],
    }
    participant_ids = {p["user_id"] for p in formatted}
    return {
        "id": match_session.id,
        "match_type": match_session.match_type.value,
        "status": match_session.status.value,
        "creator_id": match_session.creator_id,
        "creator": _profile(users.get(match_session.creator_id)),
        "entry_fee_points": match_session.entry_fee_points,
        "entry_fee_feathers": match_session.entry_fee_feathers,
        "winner_points": match_session.winner_points,
        "bet_currency_type": match_session.bet_currency_type.value,
        "bet_amount_per_player": match_session.bet_amount_per_player,
        "creation_cost_points": match_session.creation_cost_points,
        "creation_cost_feathers": match_session.creation_cost_feathers,
        "has_password": match_session.password_hash is not None,
        "is_ranked": match_session.is_ranked,
        "session_date": isoformat_or_none(match_session.session_date),
        "location": match_session.location,
        "court_number": match_session.court_number,
        "result": match_session.result.value if match_session.result else None,
        "team1_score": match_session.team1_score,
        "team2_score": match_session.team2_score,
        "created_at": isoformat_or_none(match_session.created_at),
        "started_at": isoformat_or_none(match_session.started_at),
        "completed_at": isoformat_or_none(match_session.completed_at),
        "cancelled_at": isoformat_or_none(match_session.cancelled_at),
        "players_per_team": per_team,
        "max_players": per_team * 2,
        "participant_count": len(formatted),
        "open_slots": {
            "1": per_team - len(teams["1"]),
            "2": per_team - len(teams["2"]),
        },
        "participants": formatted,
        "teams": teams,
        "current_user_id": current_user_id,
        "is_creator": current_user_id is not None and current_user_id == match_session.creator_id,
        "is_participant": current_user_id in participant_ids,
    }


async def load_participants(session: AsyncSession, session_ids: List[int]) -> Dict[int, List[MatchParticipant]]:
    """Load rosters for several sessions, ordered by team then slot."""
    rosters: Dict[int, List[MatchParticipant]] = {sid: [] for sid in session_ids}
    if not session_ids:
        return rosters
    result = await session.execute(
        select(MatchParticipant)
        .where(MatchParticipant.session_id.in_(session_ids))
        .order_by(MatchParticipant.session_id, MatchParticipant.team, MatchParticipant.slot)
    )
    for participant in result.scalars().all():
        rosters[participant.session_id].append(participant)
    return rosters


async def _load_users(session: AsyncSession, user_ids: Iterable[str]) -> Dict[str, User]:
    ids = set(user_ids)
    if not ids:
        return {}
    result = await session.execute(select(User).where(User.id.in_(ids)))
    return {u.id: u for u in result.scalars().all()}


async def _format_many(
    session: AsyncSession, sessions: List[MatchSession], current_user_id: Optional[str]
) -> List[Dict]:
    rosters = await load_participants(session, [s.id for s in sessions])
    user_ids = {s.creator_id for s in sessions}
    for roster in rosters.values():
        user_ids.update(p.user_id for p in roster)
    users = await _load_users(session, user_ids)
    return [format_session(s, rosters[s.id], users, current_user_id) for s in sessions]


async def get_session_view(
    session: AsyncSession, session_id: int, current_user_id: Optional[str] = None
) -> Dict:
    """
    Get one session with its roster, as seen by ``current_user_id``.

    Raises:
        SessionNotFoundError: If the session does not exist
    """
    match_session = await session.get(MatchSession, session_id)
    if match_session is None:
        raise SessionNotFoundError(session_id)
    return (await _format_many(session, [match_session], current_user_id))[0]


async def list_sessions(
    session: AsyncSession,
    current_user_id: Optional[str] = None,
    match_type: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> Dict:
    """List sessions newest first, optionally filtered by match type and status."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    filters = []
    try:
        if match_type:
            filters.append(MatchSession.match_type == MatchType(match_type))
        if status:
            filters.append(MatchSession.status == MatchSessionStatus(status))
    except ValueError as e:
        raise ValidationError(str(e))

    total = (
        await session.execute(select(func.count(MatchSession.id)).where(*filters))
    ).scalar_one()
    result = await session.execute(
        select(MatchSession)
        .where(*filters)
        .order_by(MatchSession.id.desc())
        .limit(limit)
        .offset(offset)
    )
    items = await _format_many(session, list(result.scalars().all()), current_user_id)
    return {"sessions": items, "total_count": total, "has_more": offset + len(items) < total}


async def get_my_pending_sessions(session: AsyncSession, user_id: str) -> List[Dict]:
    """Pending sessions the user created or joined."""
    joined = select(MatchParticipant.session_id).where(MatchParticipant.user_id == user_id)
    result = await session.execute(
        select(MatchSession)
        .where(
            MatchSession.status == MatchSessionStatus.PENDING,
            (MatchSession.creator_id == user_id) | MatchSession.id.in_(joined),
        )
        .order_by(MatchSession.id.desc())
    )
    return await _format_many(session, list(result.scalars().all()), user_id)


async def get_match_history(
    session: AsyncSession, user_id: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
) -> Dict:
    """
    Completed sessions the user played in, most recent first, plus win/loss totals.
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    played = (
        select(MatchParticipant.session_id, MatchParticipant.team)
        .where(MatchParticipant.user_id == user_id)
        .subquery()
    )
    base = (
        select(MatchSession, played.c.team)
        .join(played, played.c.session_id == MatchSession.id)
        .where(MatchSession.status == MatchSessionStatus.COMPLETED)
    )
    rows = (await session.execute(base)).all()
    wins = sum(1 for match_session, team in rows if _winning_team(match_session) == team)

    page = (
        await session.execute(
            base.order_by(MatchSession.completed_at.desc(), MatchSession.id.desc())
            .limit(limit)
            .offset(offset)
        )
    ).all()
    items = await _format_many(session, [row[0] for row in page], user_id)
    for item, row in zip(items, page):
        item["is_winner"] = _winning_team(row[0]) == row[1]

    total = len(rows)
    return {
        "sessions": items,
        "stats": {
            "games": total,
            "wins": wins,
            "losses": total - wins,
            "win_rate": round(wins / total * 100, 1) if total else 0.0,
        },
        "total_count": total,
        "has_more": offset + len(items) < total,
        "current_user_id": user_id,
    }


def _winning_team(match_session: MatchSession) -> Optional[int]:
    if match_session.result is None:
        return None
    return 1 if match_session.result.value in ("PLAYER1_WIN", "TEAM1_WIN") else 2
