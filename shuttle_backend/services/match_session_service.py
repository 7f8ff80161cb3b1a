"""
Match session state machine.

PENDING -> IN_PROGRESS -> COMPLETED, or PENDING -> CANCELLED.

All functions run inside the caller's transaction (see db.run_transaction).
Session transitions are compare-and-set writes on (id, status, version); a
write that matches no row raises ConcurrentModificationError so the whole
transaction can be retried against fresh state.
"""

import logging
import re
from typing import Dict, List, Optional

import bcrypt
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_backend.database.models import (
    BetCurrencyType,
    Currency,
    Gender,
    InvitationStatus,
    LedgerReason,
    MatchInvitation,
    MatchParticipant,
    MatchResult,
    MatchSession,
    MatchSessionStatus,
    MatchType,
    User,
)
from shuttle_backend.services import ledger_service, rating_service, session_query_service
from shuttle_backend.services.errors import (
    AlreadyJoinedError,
    ConcurrentModificationError,
    InvalidSessionStateError,
    NotParticipantError,
    NotSessionCreatorError,
    SessionFullError,
    SessionNotFoundError,
    UserNotFoundError,
    ValidationError,
    WrongPasswordError,
)
from shuttle_backend.services.session_query_service import players_per_team, max_players
from shuttle_backend.utils.constants import (
    DEFAULT_ENTRY_FEE_FEATHERS,
    DEFAULT_ENTRY_FEE_POINTS,
    DEFAULT_WINNER_POINTS,
    SESSION_PASSWORD_PATTERN,
)
from shuttle_backend.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

SINGLES_RESULTS = (MatchResult.PLAYER1_WIN, MatchResult.PLAYER2_WIN)
DOUBLES_RESULTS = (MatchResult.TEAM1_WIN, MatchResult.TEAM2_WIN)

# Gender every player must have, for gender-specific match types
REQUIRED_GENDER = {
    MatchType.MS: Gender.MALE,
    MatchType.MD: Gender.MALE,
    MatchType.WS: Gender.FEMALE,
    MatchType.WD: Gender.FEMALE,
}


# ============================================================================
# Helpers
# ============================================================================

def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}'. Must be one of: {allowed}")


def _non_negative(value: int, field: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer")
    return value


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def check_password(password: Optional[str], password_hash: str) -> bool:
    if not password:
        return False
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def check_gender(match_type: MatchType, user: User, teammates: List[User]) -> None:
    """
    Enforce the gender rule of a match type for a player taking a seat.

    Men's and women's events require the matching gender. In mixed doubles a
    team may not hold two players of the same (known) gender.
    """
    required = REQUIRED_GENDER.get(match_type)
    if required is not None and user.gender != required:
        label = "men" if required == Gender.MALE else "women"
        raise ValidationError(f"{match_type.value} matches are for {label} only")
    if match_type == MatchType.XD and user.gender is not None:
        if any(t.gender == user.gender for t in teammates):
            raise ValidationError("Mixed doubles teams need one male and one female player")


async def load_session(session: AsyncSession, session_id: int) -> MatchSession:
    """Load a session row for update, or raise SessionNotFoundError."""
    result = await session.execute(
        select(MatchSession)
        .where(MatchSession.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    match_session = result.scalar_one_or_none()
    if match_session is None:
        raise SessionNotFoundError(session_id)
    return match_session


async def _load_roster(session: AsyncSession, session_id: int) -> List[MatchParticipant]:
    rosters = await session_query_service.load_participants(session, [session_id])
    return rosters[session_id]


async def _compare_and_set(
    session: AsyncSession,
    match_session: MatchSession,
    expected_status: MatchSessionStatus,
    **values,
) -> None:
    """
    Write ``values`` only if the row still has the status and version we read.

    Bumps the version; raises ConcurrentModificationError when another
    transaction got there first.
    """
    result = await session.execute(
        update(MatchSession)
        .where(
            MatchSession.id == match_session.id,
            MatchSession.status == expected_status,
            MatchSession.version == match_session.version,
        )
        .values(version=match_session.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentModificationError(
            f"Match session {match_session.id} changed while it was being updated"
        )
    await session.refresh(match_session)


async def _teammates(
    session: AsyncSession, roster: List[MatchParticipant], team: int
) -> List[User]:
    return [await session.get(User, p.user_id) for p in roster if p.team == team]


async def _choose_team(
    session: AsyncSession,
    match_type: MatchType,
    user: User,
    roster: List[MatchParticipant],
    per_team: int,
) -> int:
    """
    Pick a team for a player who did not ask for one.

    The side with fewer players wins (team 1 on a tie), skipping sides the
    player cannot join under the gender rules. Raises the gender error only
    when no open side will take them.
    """
    counts = {1: 0, 2: 0}
    for p in roster:
        counts[p.team] += 1
    open_teams = sorted((t for t in (1, 2) if counts[t] < per_team), key=lambda t: (counts[t], t))

    first_error = None
    for candidate in open_teams:
        try:
            check_gender(match_type, user, await _teammates(session, roster, candidate))
        except ValidationError as e:
            first_error = first_error or e
            continue
        return candidate
    raise first_error


def _require_status(match_session: MatchSession, status: MatchSessionStatus, action: str) -> None:
    if match_session.status != status:
        raise InvalidSessionStateError(
            f"Cannot {action} a match that is {match_session.status.value}"
        )


# ============================================================================
# Operations
# ============================================================================

async def create_session(
    session: AsyncSession,
    creator_id: str,
    match_type: str,
    entry_fee_points: int = DEFAULT_ENTRY_FEE_POINTS,
    entry_fee_feathers: int = DEFAULT_ENTRY_FEE_FEATHERS,
    winner_points: int = DEFAULT_WINNER_POINTS,
    bet_currency_type: str = BetCurrencyType.NONE.value,
    bet_amount_per_player: int = 0,
    creation_cost_points: int = 0,
    creation_cost_feathers: int = 0,
    password: Optional[str] = None,
    is_ranked: bool = True,
    session_date=None,
    location: Optional[str] = None,
    court_number: Optional[str] = None,
) -> Dict:
    """
    Create a PENDING match session and charge the creation cost.

    The creator does not take a seat; they join like any other player.

    Raises:
        ValidationError: Bad match type, bet settings, password or costs
        InsufficientFundsError: Creator cannot afford the creation cost
        UserNotFoundError: Creator has no profile row
    """
    parsed_type = _parse_enum(MatchType, match_type, "match type")
    bet_currency = _parse_enum(BetCurrencyType, bet_currency_type, "bet currency")
    for value, field in (
        (entry_fee_points, "entry_fee_points"),
        (entry_fee_feathers, "entry_fee_feathers"),
        (winner_points, "winner_points"),
        (bet_amount_per_player, "bet_amount_per_player"),
        (creation_cost_points, "creation_cost_points"),
        (creation_cost_feathers, "creation_cost_feathers"),
    ):
        _non_negative(value, field)

    if bet_currency != BetCurrencyType.NONE and bet_amount_per_player <= 0:
        raise ValidationError("Bet amount must be greater than 0 when betting is enabled")
    if bet_currency == BetCurrencyType.NONE:
        bet_amount_per_player = 0
    if creation_cost_points > 0 and creation_cost_feathers > 0:
        raise ValidationError("Creation cost is paid in points or feathers, not both")
    if password is not None and not re.fullmatch(SESSION_PASSWORD_PATTERN, password):
        raise ValidationError("Session password must be exactly 6 digits")

    creator = await session.get(User, creator_id)
    if creator is None:
        raise UserNotFoundError(creator_id)

    match_session = MatchSession(
        match_type=parsed_type,
        status=MatchSessionStatus.PENDING,
        creator_id=creator_id,
        entry_fee_points=entry_fee_points,
        entry_fee_feathers=entry_fee_feathers,
        winner_points=winner_points,
        bet_currency_type=bet_currency,
        bet_amount_per_player=bet_amount_per_player,
        creation_cost_points=creation_cost_points,
        creation_cost_feathers=creation_cost_feathers,
        password_hash=hash_password(password) if password else None,
        is_ranked=is_ranked,
        session_date=session_date,
        location=location,
        court_number=court_number,
        version=1,
    )
    session.add(match_session)
    await session.flush()

    if creation_cost_points:
        await ledger_service.debit(
            session, creator_id, Currency.POINTS, creation_cost_points,
            LedgerReason.CREATION_COST, match_session.id,
        )
    elif creation_cost_feathers:
        await ledger_service.debit(
            session, creator_id, Currency.FEATHERS, creation_cost_feathers,
            LedgerReason.CREATION_COST, match_session.id,
        )

    await session.refresh(match_session)
    logger.info(
        f"User {creator_id} created {parsed_type.value} session {match_session.id} "
        f"(ranked={is_ranked}, bet={bet_currency.value}:{bet_amount_per_player})"
    )
    return await session_query_service.get_session_view(session, match_session.id, creator_id)


async def join_session(
    session: AsyncSession,
    session_id: int,
    user_id: str,
    team: Optional[int] = None,
    password: Optional[str] = None,
    entry_currency: str = Currency.POINTS.value,
    via_invitation: bool = False,
) -> Dict:
    """
    Seat a player, charge their entry fee and escrow their bet.

    Without an explicit team the player goes to the side with fewer players
    (team 1 on a tie) that the gender rules let them join, and takes the
    lowest free slot. Accepting an invitation skips the password check.

    Raises:
        WrongPasswordError: Password missing or wrong
        AlreadyJoinedError: Player already holds a seat
        SessionFullError: Session or requested team is full
        InvalidSessionStateError: Session is not PENDING
        InsufficientFundsError: Player cannot afford fee plus bet
    """
    currency = _parse_enum(Currency, entry_currency, "entry currency")
    if team is not None and team not in (1, 2):
        raise ValidationError("Team must be 1 or 2")

    match_session = await load_session(session, session_id)
    _require_status(match_session, MatchSessionStatus.PENDING, "join")

    if match_session.password_hash and not via_invitation:
        if not check_password(password, match_session.password_hash):
            raise WrongPasswordError()

    roster = await _load_roster(session, session_id)
    if any(p.user_id == user_id for p in roster):
        raise AlreadyJoinedError("You have already joined this match")

    per_team = players_per_team(match_session.match_type)
    if len(roster) >= per_team * 2:
        raise SessionFullError()

    if team is not None and sum(1 for p in roster if p.team == team) >= per_team:
        raise SessionFullError(f"Team {team} is full")

    user = await session.get(User, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    if team is None:
        team = await _choose_team(session, match_session.match_type, user, roster, per_team)
    else:
        check_gender(match_session.match_type, user, await _teammates(session, roster, team))

    taken = {p.slot for p in roster if p.team == team}
    slot = min(s for s in range(1, per_team + 1) if s not in taken)

    # Claim the roster change before touching money
    await _compare_and_set(session, match_session, MatchSessionStatus.PENDING)

    fee = (
        match_session.entry_fee_points
        if currency == Currency.POINTS
        else match_session.entry_fee_feathers
    )
    await ledger_service.debit(
        session, user_id, currency, fee, LedgerReason.ENTRY_FEE, session_id
    )
    bet = 0
    if match_session.bet_currency_type != BetCurrencyType.NONE:
        bet = match_session.bet_amount_per_player
        await ledger_service.debit(
            session,
            user_id,
            Currency(match_session.bet_currency_type.value),
            bet,
            LedgerReason.BET_ESCROW,
            session_id,
        )

    participant = MatchParticipant(
        session_id=session_id,
        user_id=user_id,
        team=team,
        slot=slot,
        entry_currency=currency,
        entry_fee_points_paid=fee if currency == Currency.POINTS else 0,
        entry_fee_feathers_paid=fee if currency == Currency.FEATHERS else 0,
        bet_amount_paid=bet,
    )
    session.add(participant)
    await session.flush()

    logger.info(
        f"User {user_id} joined session {session_id} on team {team} slot {slot} "
        f"({len(roster) + 1}/{per_team * 2})"
    )
    return await session_query_service.get_session_view(session, session_id, user_id)


async def start_session(session: AsyncSession, session_id: int, requester_id: str) -> Dict:
    """
    Move a full PENDING session to IN_PROGRESS. Creator only.

    Raises:
        NotSessionCreatorError: Requester is not the creator
        InvalidSessionStateError: Not PENDING, or roster not full
    """
    match_session = await load_session(session, session_id)
    if match_session.creator_id != requester_id:
        raise NotSessionCreatorError("start")
    _require_status(match_session, MatchSessionStatus.PENDING, "start")

    roster = await _load_roster(session, session_id)
    required = max_players(match_session.match_type)
    if len(roster) != required:
        raise InvalidSessionStateError(
            f"All {required} players must join before the match starts ({len(roster)} joined)"
        )

    await _compare_and_set(
        session, match_session, MatchSessionStatus.PENDING,
        status=MatchSessionStatus.IN_PROGRESS, started_at=utcnow(),
    )
    logger.info(f"Session {session_id} started by {requester_id}")
    return await session_query_service.get_session_view(session, session_id, requester_id)


async def complete_session(
    session: AsyncSession,
    session_id: int,
    requester_id: str,
    result: str,
    team1_score: Optional[int] = None,
    team2_score: Optional[int] = None,
) -> Dict:
    """
    Record the result of an IN_PROGRESS session and settle it.

    Settlement pays the escrowed bet pool to the winning side in equal
    shares, credits winner points to each winner, returns the creation cost
    to the creator and applies ratings for the session's match type.

    Raises:
        NotParticipantError: Requester did not play in the match
        InvalidSessionStateError: Session is not IN_PROGRESS
        ValidationError: Result does not fit the match type, or scores disagree
    """
    parsed_result = _parse_enum(MatchResult, result, "result")
    match_session = await load_session(session, session_id)
    roster = await _load_roster(session, session_id)
    if not any(p.user_id == requester_id for p in roster):
        raise NotParticipantError("Only participants can report the result")
    _require_status(match_session, MatchSessionStatus.IN_PROGRESS, "complete")

    valid = SINGLES_RESULTS if players_per_team(match_session.match_type) == 1 else DOUBLES_RESULTS
    if parsed_result not in valid:
        raise ValidationError(
            f"Result for {match_session.match_type.value} must be one of: "
            f"{', '.join(r.value for r in valid)}"
        )
    winning_team = 1 if parsed_result in (MatchResult.PLAYER1_WIN, MatchResult.TEAM1_WIN) else 2

    if team1_score is not None or team2_score is not None:
        if team1_score is None or team2_score is None:
            raise ValidationError("Both team scores are required when reporting a score")
        _non_negative(team1_score, "team1_score")
        _non_negative(team2_score, "team2_score")
        winner_score, loser_score = (
            (team1_score, team2_score) if winning_team == 1 else (team2_score, team1_score)
        )
        if winner_score <= loser_score:
            raise ValidationError("Scores do not match the reported result")

    await _compare_and_set(
        session, match_session, MatchSessionStatus.IN_PROGRESS,
        status=MatchSessionStatus.COMPLETED,
        result=parsed_result,
        team1_score=team1_score,
        team2_score=team2_score,
        completed_at=utcnow(),
    )

    winners = [p for p in roster if p.team == winning_team]
    payouts = _split_pool(sum(p.bet_amount_paid for p in roster), len(winners))
    bet_currency = match_session.bet_currency_type
    for participant, share in zip(winners, payouts):
        if share and bet_currency != BetCurrencyType.NONE:
            await ledger_service.credit(
                session, participant.user_id, Currency(bet_currency.value), share,
                LedgerReason.BET_PAYOUT, session_id,
            )
        await ledger_service.credit(
            session, participant.user_id, Currency.POINTS, match_session.winner_points,
            LedgerReason.WINNER_BONUS, session_id,
        )
        earned = match_session.winner_points
        if bet_currency == BetCurrencyType.POINTS:
            earned += share
        participant.points_earned = earned

    for participant in roster:
        if participant.user_id == requester_id:
            participant.result_confirmed = True

    await ledger_service.refund(session, session_id, reason=LedgerReason.CREATION_COST)
    await rating_service.apply_match_ratings(session, match_session, roster, winning_team)
    await session.flush()

    logger.info(
        f"Session {session_id} completed: {parsed_result.value} reported by {requester_id}"
    )
    return await session_query_service.get_session_view(session, session_id, requester_id)


def _split_pool(pool: int, winners: int) -> List[int]:
    """Equal shares of the pool; any remainder goes to the first winners in seat order."""
    if winners == 0:
        return []
    share, remainder = divmod(pool, winners)
    return [share + (1 if i < remainder else 0) for i in range(winners)]


async def cancel_session(session: AsyncSession, session_id: int, requester_id: str) -> Dict:
    """
    Cancel a PENDING session. Creator only.

    Every debit the session caused (creation cost, entry fees, bet escrows)
    is refunded and outstanding invitations are cancelled.

    Raises:
        NotSessionCreatorError: Requester is not the creator
        InvalidSessionStateError: Session already started or finished
    """
    match_session = await load_session(session, session_id)
    if match_session.creator_id != requester_id:
        raise NotSessionCreatorError("cancel")
    _require_status(match_session, MatchSessionStatus.PENDING, "cancel")

    await _compare_and_set(
        session, match_session, MatchSessionStatus.PENDING,
        status=MatchSessionStatus.CANCELLED, cancelled_at=utcnow(),
    )

    refunds = await ledger_service.refund(session, session_id)
    roster = await _load_roster(session, session_id)
    for participant in roster:
        participant.entry_fee_refunded = True

    await session.execute(
        update(MatchInvitation)
        .where(
            MatchInvitation.session_id == session_id,
            MatchInvitation.status == InvitationStatus.PENDING,
        )
        .values(status=InvitationStatus.CANCELLED, responded_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.flush()

    logger.info(
        f"Session {session_id} cancelled by {requester_id}, {len(refunds)} refund(s) issued"
    )
    return await session_query_service.get_session_view(session, session_id, requester_id)
