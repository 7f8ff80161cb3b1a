"""
Unit tests for the match session state machine.

Covers creation rules, joining (passwords, balancing, capacity, fees and
bets), starting, completing with settlement and ratings, cancelling with
refunds, and races for the last seat.
"""

import asyncio

import pytest
from sqlalchemy import select

from shuttle_backend.database import db
from shuttle_backend.database.models import (
    Gender,
    LedgerEntry,
    LedgerReason,
    MatchParticipant,
    MatchSession,
    MatchType,
    RatingRecord,
    User,
)
from shuttle_backend.services import ledger_service, match_session_service
from shuttle_backend.services.errors import (
    AlreadyJoinedError,
    InsufficientFundsError,
    InvalidSessionStateError,
    NotParticipantError,
    NotSessionCreatorError,
    SessionFullError,
    ValidationError,
    WrongPasswordError,
)


async def _create_user(db_session, user_id, gender=Gender.MALE, points=1000, feathers=100):
    user = User(id=user_id, nickname=user_id.title(), gender=gender, points=points, feathers=feathers)
    db_session.add(user)
    await db_session.flush()
    return user


async def _balance(db_session, user_id):
    return await ledger_service.get_balance(db_session, user_id)


async def _free_session(db_session, creator_id, match_type="MS", **overrides):
    """Helper: a session with no fees, bonus or bet unless overridden."""
    settings = dict(entry_fee_points=0, entry_fee_feathers=0, winner_points=0)
    settings.update(overrides)
    return await match_session_service.create_session(
        db_session, creator_id, match_type, **settings
    )


async def _full_doubles(db_session, **overrides):
    """Helper: MD session created by a, with a/b on team 1 and c/d on team 2."""
    for user_id in ("a", "b", "c", "d"):
        await _create_user(db_session, user_id)
    view = await _free_session(db_session, "a", "MD", **overrides)
    for user_id, team in (("a", 1), ("b", 1), ("c", 2), ("d", 2)):
        await match_session_service.join_session(db_session, view["id"], user_id, team=team)
    return view["id"]


# ──────────────────────────────────────────────────────────────
# Create
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_session_defaults(db_session):
    await _create_user(db_session, "alice")

    view = await match_session_service.create_session(db_session, "alice", "XD")

    assert view["status"] == "PENDING"
    assert view["match_type"] == "XD"
    assert view["entry_fee_points"] == 20
    assert view["entry_fee_feathers"] == 10
    assert view["winner_points"] == 100
    assert view["bet_currency_type"] == "NONE"
    assert view["max_players"] == 4
    assert view["participant_count"] == 0
    assert view["is_creator"] is True
    assert view["has_password"] is False


@pytest.mark.asyncio
async def test_create_session_debits_creation_cost(db_session):
    await _create_user(db_session, "alice", feathers=100)

    view = await _free_session(db_session, "alice", creation_cost_feathers=50)

    assert (await _balance(db_session, "alice"))["feathers"] == 50
    entry = (await db_session.execute(select(LedgerEntry))).scalar_one()
    assert entry.reason == LedgerReason.CREATION_COST
    assert entry.session_id == view["id"]


@pytest.mark.asyncio
async def test_create_session_insufficient_funds_creates_nothing(db_session):
    await _create_user(db_session, "alice", points=10)
    await db_session.commit()

    with pytest.raises(InsufficientFundsError):
        await db.run_transaction(
            match_session_service.create_session, "alice", "MS", creation_cost_points=50
        )

    assert (await db_session.execute(select(MatchSession))).scalars().all() == []
    assert (await _balance(db_session, "alice"))["points"] == 10


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"match_type": "QQ"},
    {"bet_currency_type": "POINTS", "bet_amount_per_player": 0},
    {"bet_currency_type": "GOLD", "bet_amount_per_player": 10},
    {"password": "12345"},
    {"password": "abcdef"},
    {"password": "123456\n"},
    {"password": "\u0661\u0662\u0663\u0664\u0665\u0666"},
    {"creation_cost_points": 10, "creation_cost_feathers": 10},
    {"entry_fee_points": -1},
])
async def test_create_session_validation(db_session, overrides):
    await _create_user(db_session, "alice")
    settings = {"match_type": "MS"}
    settings.update(overrides)

    with pytest.raises(ValidationError):
        await match_session_service.create_session(db_session, "alice", **settings)


# ──────────────────────────────────────────────────────────────
# Join
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_join_auto_balances_teams(db_session):
    for user_id in ("a", "b", "c", "d"):
        await _create_user(db_session, user_id)
    view = await _free_session(db_session, "a", "MD")

    teams = []
    for user_id in ("a", "b", "c", "d"):
        joined = await match_session_service.join_session(db_session, view["id"], user_id)
        me = next(p for p in joined["participants"] if p["user_id"] == user_id)
        teams.append((me["team"], me["slot"]))

    assert teams == [(1, 1), (2, 1), (1, 2), (2, 2)]


@pytest.mark.asyncio
async def test_join_charges_entry_fee_in_chosen_currency(db_session):
    await _create_user(db_session, "alice")
    await _create_user(db_session, "bob", points=500, feathers=30)
    view = await _free_session(db_session, "alice", entry_fee_points=20, entry_fee_feathers=10)

    joined = await match_session_service.join_session(
        db_session, view["id"], "bob", entry_currency="FEATHERS"
    )

    assert (await _balance(db_session, "bob")) == {"user_id": "bob", "points": 500, "feathers": 20}
    bob = joined["participants"][0]
    assert bob["entry_fee_feathers_paid"] == 10
    assert bob["entry_fee_points_paid"] == 0


@pytest.mark.asyncio
async def test_join_escrows_bet(db_session):
    await _create_user(db_session, "alice", points=150)
    view = await _free_session(
        db_session, "alice", bet_currency_type="POINTS", bet_amount_per_player=100
    )

    await match_session_service.join_session(db_session, view["id"], "alice")

    assert (await _balance(db_session, "alice"))["points"] == 50
    reasons = [e.reason for e in (await db_session.execute(select(LedgerEntry))).scalars().all()]
    assert reasons == [LedgerReason.BET_ESCROW]


@pytest.mark.asyncio
async def test_join_insufficient_funds_leaves_roster_unchanged(db_session):
    await _create_user(db_session, "alice")
    await _create_user(db_session, "bob", points=5)
    view = await _free_session(db_session, "alice", entry_fee_points=20)
    await db_session.commit()

    with pytest.raises(InsufficientFundsError):
        await db.run_transaction(match_session_service.join_session, view["id"], "bob")

    participants = (await db_session.execute(select(MatchParticipant))).scalars().all()
    assert participants == []
    assert (await _balance(db_session, "bob"))["points"] == 5


@pytest.mark.asyncio
async def test_join_requires_password(db_session):
    await _create_user(db_session, "alice")
    await _create_user(db_session, "bob")
    view = await _free_session(db_session, "alice", password="123456")
    assert view["has_password"] is True

    with pytest.raises(WrongPasswordError):
        await match_session_service.join_session(db_session, view["id"], "bob")
    with pytest.raises(WrongPasswordError):
        await match_session_service.join_session(db_session, view["id"], "bob", password="654321")

    joined = await match_session_service.join_session(
        db_session, view["id"], "bob", password="123456"
    )
    assert joined["participant_count"] == 1


@pytest.mark.asyncio
async def test_join_twice_conflicts(db_session):
    await _create_user(db_session, "alice")
    view = await _free_session(db_session, "alice")
    await match_session_service.join_session(db_session, view["id"], "alice")

    with pytest.raises(AlreadyJoinedError):
        await match_session_service.join_session(db_session, view["id"], "alice")


@pytest.mark.asyncio
async def test_join_full_team_conflicts(db_session):
    for user_id in ("a", "b", "c"):
        await _create_user(db_session, user_id)
    view = await _free_session(db_session, "a", "MD")
    await match_session_service.join_session(db_session, view["id"], "a", team=1)
    await match_session_service.join_session(db_session, view["id"], "b", team=1)

    with pytest.raises(SessionFullError):
        await match_session_service.join_session(db_session, view["id"], "c", team=1)

    participants = (await db_session.execute(select(MatchParticipant))).scalars().all()
    assert len(participants) == 2


@pytest.mark.asyncio
async def test_join_full_session_conflicts(db_session):
    for user_id in ("a", "b", "c"):
        await _create_user(db_session, user_id)
    view = await _free_session(db_session, "a", "MS")
    await match_session_service.join_session(db_session, view["id"], "a")
    await match_session_service.join_session(db_session, view["id"], "b")

    with pytest.raises(SessionFullError):
        await match_session_service.join_session(db_session, view["id"], "c")


@pytest.mark.asyncio
async def test_join_gender_rules(db_session):
    await _create_user(db_session, "man")
    await _create_user(db_session, "woman", gender=Gender.FEMALE)
    await _create_user(db_session, "man2")
    ws = await _free_session(db_session, "woman", "WS")
    xd = await _free_session(db_session, "man", "XD")

    with pytest.raises(ValidationError):
        await match_session_service.join_session(db_session, ws["id"], "man")

    await match_session_service.join_session(db_session, xd["id"], "man", team=1)
    with pytest.raises(ValidationError):
        await match_session_service.join_session(db_session, xd["id"], "man2", team=1)
    await match_session_service.join_session(db_session, xd["id"], "woman", team=1)


@pytest.mark.asyncio
async def test_auto_team_skips_side_blocked_by_mixed_rule(db_session):
    for user_id in ("m1", "m2", "m3"):
        await _create_user(db_session, user_id)
    await _create_user(db_session, "f1", gender=Gender.FEMALE)
    xd = await _free_session(db_session, "m1", "XD")
    await match_session_service.join_session(db_session, xd["id"], "m1", team=1)
    await match_session_service.join_session(db_session, xd["id"], "f1", team=2)

    # Tie goes to team 1 by default, but team 1 already has a man
    view = await match_session_service.join_session(db_session, xd["id"], "m2")
    m2 = next(p for p in view["participants"] if p["user_id"] == "m2")
    assert m2["team"] == 2

    # Both open seats now sit next to a man
    with pytest.raises(ValidationError):
        await match_session_service.join_session(db_session, xd["id"], "m3")


@pytest.mark.asyncio
async def test_join_requires_pending(db_session):
    session_id = await _full_doubles(db_session)
    await match_session_service.cancel_session(db_session, session_id, "a")
    await _create_user(db_session, "e")

    with pytest.raises(InvalidSessionStateError):
        await match_session_service.join_session(db_session, session_id, "e")


@pytest.mark.asyncio
async def test_concurrent_join_for_last_seat(db_session):
    """Two players race for the final doubles seat: exactly one wins it."""
    for user_id in ("a", "b", "c", "d", "e"):
        await _create_user(db_session, user_id)
    view = await _free_session(db_session, "a", "MD", entry_fee_points=20)
    for user_id in ("a", "b", "c"):
        await match_session_service.join_session(db_session, view["id"], user_id)
    await db_session.commit()

    results = await asyncio.gather(
        db.run_transaction(match_session_service.join_session, view["id"], "d"),
        db.run_transaction(match_session_service.join_session, view["id"], "e"),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], SessionFullError)

    db_session.expire_all()
    participants = (await db_session.execute(
        select(MatchParticipant).where(MatchParticipant.session_id == view["id"])
    )).scalars().all()
    assert len(participants) == 4
    # The loser was not charged
    balances = [(await _balance(db_session, u))["points"] for u in ("d", "e")]
    assert sorted(balances) == [980, 1000]


# ──────────────────────────────────────────────────────────────
# Start
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_start_requires_creator(db_session):
    session_id = await _full_doubles(db_session)

    with pytest.raises(NotSessionCreatorError):
        await match_session_service.start_session(db_session, session_id, "b")


@pytest.mark.asyncio
async def test_start_requires_full_roster(db_session):
    await _create_user(db_session, "alice")
    view = await _free_session(db_session, "alice")
    await match_session_service.join_session(db_session, view["id"], "alice")

    with pytest.raises(InvalidSessionStateError):
        await match_session_service.start_session(db_session, view["id"], "alice")


@pytest.mark.asyncio
async def test_start_twice_conflicts(db_session):
    session_id = await _full_doubles(db_session)

    started = await match_session_service.start_session(db_session, session_id, "a")
    assert started["status"] == "IN_PROGRESS"
    assert started["started_at"] is not None

    with pytest.raises(InvalidSessionStateError):
        await match_session_service.start_session(db_session, session_id, "a")


@pytest.mark.asyncio
async def test_concurrent_start_only_one_succeeds(db_session):
    session_id = await _full_doubles(db_session)
    await db_session.commit()

    results = await asyncio.gather(
        db.run_transaction(match_session_service.start_session, session_id, "a"),
        db.run_transaction(match_session_service.start_session, session_id, "a"),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, dict)) == 1
    assert sum(1 for r in results if isinstance(r, InvalidSessionStateError)) == 1


# ──────────────────────────────────────────────────────────────
# Complete
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_doubles_bet_settlement(db_session):
    """2v2 with a 100 point bet each: winners +100, losers -100."""
    session_id = await _full_doubles(
        db_session, bet_currency_type="POINTS", bet_amount_per_player=100
    )
    await match_session_service.start_session(db_session, session_id, "a")

    view = await match_session_service.complete_session(
        db_session, session_id, "c", "TEAM1_WIN", team1_score=21, team2_score=17
    )

    assert view["status"] == "COMPLETED"
    assert view["result"] == "TEAM1_WIN"
    balances = {u: (await _balance(db_session, u))["points"] for u in ("a", "b", "c", "d")}
    assert balances == {"a": 1100, "b": 1100, "c": 900, "d": 900}


@pytest.mark.asyncio
async def test_complete_awards_winner_points_and_refunds_creation_cost(db_session):
    for user_id in ("alice", "bob"):
        await _create_user(db_session, user_id, points=1000)
    view = await _free_session(
        db_session, "alice", winner_points=100, entry_fee_points=20, creation_cost_points=50
    )
    await match_session_service.join_session(db_session, view["id"], "alice")
    await match_session_service.join_session(db_session, view["id"], "bob")
    await match_session_service.start_session(db_session, view["id"], "alice")

    completed = await match_session_service.complete_session(
        db_session, view["id"], "bob", "PLAYER2_WIN"
    )

    # alice: -50 creation, -20 entry, +50 creation refund
    assert (await _balance(db_session, "alice"))["points"] == 980
    # bob: -20 entry, +100 winner bonus
    assert (await _balance(db_session, "bob"))["points"] == 1080
    bob = next(p for p in completed["participants"] if p["user_id"] == "bob")
    assert bob["points_earned"] == 100
    assert bob["rating_change"] == 16
    assert bob["result_confirmed"] is True


@pytest.mark.asyncio
async def test_complete_updates_only_session_match_type(db_session):
    session_id = await _full_doubles(db_session)
    db_session.add(RatingRecord(
        user_id="a", match_type=MatchType.MS, rating=1600, peak_rating=1600, games=3, wins=2
    ))
    await db_session.flush()
    await match_session_service.start_session(db_session, session_id, "a")

    await match_session_service.complete_session(db_session, session_id, "a", "TEAM2_WIN")

    records = (await db_session.execute(
        select(RatingRecord).where(RatingRecord.user_id == "a")
    )).scalars().all()
    by_type = {r.match_type: r.rating for r in records}
    assert by_type == {MatchType.MS: 1600, MatchType.MD: 1484}


@pytest.mark.asyncio
async def test_complete_requires_participant(db_session):
    session_id = await _full_doubles(db_session)
    await _create_user(db_session, "outsider")
    await match_session_service.start_session(db_session, session_id, "a")

    with pytest.raises(NotParticipantError):
        await match_session_service.complete_session(db_session, session_id, "outsider", "TEAM1_WIN")


@pytest.mark.asyncio
async def test_complete_requires_in_progress(db_session):
    session_id = await _full_doubles(db_session)

    with pytest.raises(InvalidSessionStateError):
        await match_session_service.complete_session(db_session, session_id, "a", "TEAM1_WIN")


@pytest.mark.asyncio
@pytest.mark.parametrize("result,scores", [
    ("PLAYER1_WIN", (None, None)),
    ("DRAW", (None, None)),
    ("TEAM1_WIN", (15, 21)),
    ("TEAM1_WIN", (21, None)),
])
async def test_complete_rejects_bad_result(db_session, result, scores):
    session_id = await _full_doubles(db_session)
    await match_session_service.start_session(db_session, session_id, "a")

    with pytest.raises(ValidationError):
        await match_session_service.complete_session(
            db_session, session_id, "a", result, team1_score=scores[0], team2_score=scores[1]
        )


@pytest.mark.asyncio
async def test_complete_twice_conflicts(db_session):
    session_id = await _full_doubles(db_session)
    await match_session_service.start_session(db_session, session_id, "a")
    await match_session_service.complete_session(db_session, session_id, "a", "TEAM1_WIN")

    with pytest.raises(InvalidSessionStateError):
        await match_session_service.complete_session(db_session, session_id, "c", "TEAM2_WIN")


# ──────────────────────────────────────────────────────────────
# Cancel
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cancel_refunds_creation_cost(db_session):
    """Creation cost 50 feathers: 100 -> 50 on create, back to 100 on cancel."""
    await _create_user(db_session, "alice", feathers=100)
    view = await _free_session(db_session, "alice", creation_cost_feathers=50)
    assert (await _balance(db_session, "alice"))["feathers"] == 50

    cancelled = await match_session_service.cancel_session(db_session, view["id"], "alice")

    assert cancelled["status"] == "CANCELLED"
    assert (await _balance(db_session, "alice"))["feathers"] == 100


@pytest.mark.asyncio
async def test_cancel_refunds_entry_fees_and_bets(db_session):
    session_id = await _full_doubles(
        db_session, entry_fee_points=20, bet_currency_type="FEATHERS", bet_amount_per_player=30
    )
    assert (await _balance(db_session, "c")) == {"user_id": "c", "points": 980, "feathers": 70}

    view = await match_session_service.cancel_session(db_session, session_id, "a")

    for user_id in ("a", "b", "c", "d"):
        balance = await _balance(db_session, user_id)
        assert (balance["points"], balance["feathers"]) == (1000, 100)
    assert all(p["entry_fee_refunded"] for p in view["participants"])


@pytest.mark.asyncio
async def test_cancel_requires_creator_and_pending(db_session):
    session_id = await _full_doubles(db_session)

    with pytest.raises(NotSessionCreatorError):
        await match_session_service.cancel_session(db_session, session_id, "b")

    await match_session_service.start_session(db_session, session_id, "a")
    with pytest.raises(InvalidSessionStateError):
        await match_session_service.cancel_session(db_session, session_id, "a")


def test_split_pool_spreads_remainder():
    assert match_session_service._split_pool(400, 2) == [200, 200]
    assert match_session_service._split_pool(5, 2) == [3, 2]
    assert match_session_service._split_pool(0, 2) == [0, 0]
