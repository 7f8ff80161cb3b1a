"""
Rating service.
Per-match-type ELO updates, rating reads and leaderboards.
"""

import logging
import math
from typing import Dict, List, Sequence, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_backend.database.models import (
    MatchParticipant,
    MatchSession,
    MatchType,
    RatingHistory,
    RatingRecord,
    User,
)
from shuttle_backend.services.errors import UserNotFoundError, ValidationError
from shuttle_backend.utils.constants import (
    INITIAL_RATING,
    K,
    MAX_PAGE_SIZE,
    RATING_FLOOR,
    RATING_TIERS,
)
from shuttle_backend.utils.datetime_utils import isoformat_or_none

logger = logging.getLogger(__name__)


# ============================================================================
# Helper Functions (ELO Calculations)
# ============================================================================

def expected_score(rating_a: float, rating_b: float) -> float:
    """
    Calculate expected score for side A against side B using ELO formula.

    Formula: P(A beats B) = 1 / (1 + 10^((rating_B - rating_A) / 400))
    """
    return 1 / (1 + 10 ** ((rating_b - rating_a) / 400))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards positive infinity."""
    return int(math.floor(value + 0.5))


def elo_change(k: float, expected: float, actual: float) -> int:
    """Calculate the integer ELO rating change."""
    return round_half_up(k * (actual - expected))


def team_rating(ratings: Sequence[float]) -> float:
    """A team plays at the average rating of its members."""
    return sum(ratings) / len(ratings)


def calculate_team_deltas(
    team1_ratings: Sequence[float], team2_ratings: Sequence[float], winning_team: int
) -> Tuple[int, int]:
    """
    Calculate the rating change for each team.

    Every member of a team receives that team's delta.

    Args:
        team1_ratings: Current ratings of team 1 members
        team2_ratings: Current ratings of team 2 members
        winning_team: 1 or 2

    Returns:
        (team1_delta, team2_delta)
    """
    if winning_team not in (1, 2):
        raise ValidationError(f"winning_team must be 1 or 2, got {winning_team}")
    rating1 = team_rating(team1_ratings)
    rating2 = team_rating(team2_ratings)
    actual1 = 1.0 if winning_team == 1 else 0.0
    delta1 = elo_change(K, expected_score(rating1, rating2), actual1)
    delta2 = elo_change(K, expected_score(rating2, rating1), 1.0 - actual1)
    return delta1, delta2


def apply_delta(rating: int, delta: int) -> int:
    """Apply a delta without going below the rating floor."""
    return max(RATING_FLOOR, rating + delta)


def rating_tier(rating: int) -> str:
    for lower_bound, name in RATING_TIERS:
        if rating >= lower_bound:
            return name
    return RATING_TIERS[-1][1]


# ============================================================================
# Persistence
# ============================================================================

async def get_or_create_rating(
    session: AsyncSession, user_id: str, match_type: MatchType
) -> RatingRecord:
    """Load a player's rating record for one match type, creating it at the initial rating."""
    result = await session.execute(
        select(RatingRecord)
        .where(RatingRecord.user_id == user_id, RatingRecord.match_type == MatchType(match_type))
        .with_for_update()
    )
    record = result.scalar_one_or_none()
    if record is None:
        record = RatingRecord(
            user_id=user_id,
            match_type=MatchType(match_type),
            rating=INITIAL_RATING,
            peak_rating=INITIAL_RATING,
            games=0,
            wins=0,
        )
        session.add(record)
        await session.flush()
    return record


async def apply_match_ratings(
    session: AsyncSession,
    match_session: MatchSession,
    participants: List[MatchParticipant],
    winning_team: int,
) -> Dict[str, int]:
    """
    Update ratings for a completed match.

    Only the rating dimension of the session's match type is touched. Unranked
    sessions still count games and wins but leave ratings alone.

    Returns:
        Mapping of user id to rating change (empty for unranked sessions)
    """
    match_type = match_session.match_type
    records = {}
    for participant in participants:
        records[participant.user_id] = await get_or_create_rating(
            session, participant.user_id, match_type
        )

    changes: Dict[str, int] = {}
    if match_session.is_ranked:
        team1 = [records[p.user_id].rating for p in participants if p.team == 1]
        team2 = [records[p.user_id].rating for p in participants if p.team == 2]
        delta1, delta2 = calculate_team_deltas(team1, team2, winning_team)
        for participant in participants:
            record = records[participant.user_id]
            before = record.rating
            after = apply_delta(before, delta1 if participant.team == 1 else delta2)
            record.rating = after
            record.peak_rating = max(record.peak_rating, after)
            participant.rating_before = before
            participant.rating_after = after
            participant.rating_change = after - before
            changes[participant.user_id] = after - before
            session.add(
                RatingHistory(
                    user_id=participant.user_id,
                    session_id=match_session.id,
                    match_type=match_type,
                    rating_before=before,
                    rating_after=after,
                    rating_change=after - before,
                    is_winner=participant.team == winning_team,
                )
            )

    for participant in participants:
        record = records[participant.user_id]
        record.games += 1
        if participant.team == winning_team:
            record.wins += 1

    await session.flush()
    logger.info(
        f"Applied {match_type.value} results for session {match_session.id} "
        f"(ranked={match_session.is_ranked}): {changes}"
    )
    return changes


# ============================================================================
# Reads
# ============================================================================

def _format_rating(record: RatingRecord) -> Dict:
    return {
        "match_type": record.match_type.value,
        "rating": record.rating,
        "peak_rating": record.peak_rating,
        "games": record.games,
        "wins": record.wins,
        "losses": record.games - record.wins,
        "win_rate": round(record.wins / record.games * 100, 1) if record.games else 0.0,
        "tier": rating_tier(record.rating),
    }


async def get_user_ratings(session: AsyncSession, user_id: str, history_limit: int = 20) -> Dict:
    """
    Get a player's ratings for every match type plus recent rating history.

    Match types the player has never played report the initial rating.
    """
    user = await session.get(User, user_id)
    if user is None:
        raise UserNotFoundError(user_id)

    result = await session.execute(select(RatingRecord).where(RatingRecord.user_id == user_id))
    by_type = {r.match_type: _format_rating(r) for r in result.scalars().all()}
    ratings = {}
    for match_type in MatchType:
        ratings[match_type.value] = by_type.get(match_type) or {
            "match_type": match_type.value,
            "rating": INITIAL_RATING,
            "peak_rating": INITIAL_RATING,
            "games": 0,
            "wins": 0,
            "losses": 0,
            "win_rate": 0.0,
            "tier": rating_tier(INITIAL_RATING),
        }

    total_games = sum(r["games"] for r in ratings.values())
    total_wins = sum(r["wins"] for r in ratings.values())

    history = await session.execute(
        select(RatingHistory)
        .where(RatingHistory.user_id == user_id)
        .order_by(RatingHistory.id.desc())
        .limit(history_limit)
    )

    return {
        "user_id": user_id,
        "nickname": user.nickname,
        "ratings": ratings,
        "overall": {
            "games": total_games,
            "wins": total_wins,
            "losses": total_games - total_wins,
            "win_rate": round(total_wins / total_games * 100, 1) if total_games else 0.0,
            "highest_rating": max(r["rating"] for r in ratings.values()),
        },
        "history": [
            {
                "session_id": h.session_id,
                "match_type": h.match_type.value,
                "rating_before": h.rating_before,
                "rating_after": h.rating_after,
                "rating_change": h.rating_change,
                "is_winner": h.is_winner,
                "created_at": isoformat_or_none(h.created_at),
            }
            for h in history.scalars().all()
        ],
    }


async def get_leaderboard(
    session: AsyncSession, match_type: str, limit: int = 50, offset: int = 0
) -> Dict:
    """
    Rank players who have played at least one game.

    ``match_type`` is one of the match types or ``ALL``; ALL ranks by each
    player's best rating across match types and sums their games.
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    if match_type == "ALL":
        rating_col = func.max(RatingRecord.rating).label("rating")
        query = (
            select(
                RatingRecord.user_id,
                rating_col,
                func.max(RatingRecord.peak_rating).label("peak_rating"),
                func.sum(RatingRecord.games).label("games"),
                func.sum(RatingRecord.wins).label("wins"),
            )
            .group_by(RatingRecord.user_id)
            .having(func.sum(RatingRecord.games) > 0)
        )
    else:
        try:
            parsed = MatchType(match_type)
        except ValueError:
            raise ValidationError(
                "Invalid match type. Must be MS, WS, MD, WD, XD, or ALL"
            )
        rating_col = RatingRecord.rating.label("rating")
        query = select(
            RatingRecord.user_id,
            rating_col,
            RatingRecord.peak_rating.label("peak_rating"),
            RatingRecord.games.label("games"),
            RatingRecord.wins.label("wins"),
        ).where(RatingRecord.match_type == parsed, RatingRecord.games > 0)

    ranked = query.subquery()
    total = (await session.execute(select(func.count()).select_from(ranked))).scalar_one()
    result = await session.execute(
        select(ranked, User.nickname, User.name, User.profile_image, User.gender)
        .join(User, User.id == ranked.c.user_id)
        .order_by(ranked.c.rating.desc(), ranked.c.user_id)
        .limit(limit)
        .offset(offset)
    )

    leaderboard = []
    for index, row in enumerate(result.all()):
        games = int(row.games or 0)
        wins = int(row.wins or 0)
        leaderboard.append({
            "rank": offset + index + 1,
            "user_id": row.user_id,
            "nickname": row.nickname,
            "name": row.name,
            "profile_image": row.profile_image,
            "gender": row.gender.value if row.gender else None,
            "rating": row.rating,
            "peak_rating": row.peak_rating,
            "tier": rating_tier(row.rating),
            "games": games,
            "wins": wins,
            "losses": games - wins,
            "win_rate": round(wins / games * 100, 1) if games else 0.0,
        })

    return {
        "match_type": match_type,
        "total": total,
        "limit": limit,
        "offset": offset,
        "leaderboard": leaderboard,
    }
