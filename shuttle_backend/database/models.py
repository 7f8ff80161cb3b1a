"""
SQLAlchemy ORM models for the badminton match session and rating engine.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from shuttle_backend.database.db import Base


class MatchType(str, enum.Enum):
    """Badminton match types: singles and doubles by gender, plus mixed doubles."""

    MS = "MS"
    WS = "WS"
    MD = "MD"
    WD = "WD"
    XD = "XD"


class MatchSessionStatus(str, enum.Enum):
    """Match session lifecycle status."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Currency(str, enum.Enum):
    """Wallet currencies."""

    POINTS = "POINTS"
    FEATHERS = "FEATHERS"


class BetCurrencyType(str, enum.Enum):
    """Betting currency for a session (NONE disables betting)."""

    NONE = "NONE"
    POINTS = "POINTS"
    FEATHERS = "FEATHERS"


class MatchResult(str, enum.Enum):
    """Reported match outcome."""

    PLAYER1_WIN = "PLAYER1_WIN"
    PLAYER2_WIN = "PLAYER2_WIN"
    TEAM1_WIN = "TEAM1_WIN"
    TEAM2_WIN = "TEAM2_WIN"


class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


class InvitationStatus(str, enum.Enum):
    """Match invitation status enum."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"


class LedgerReason(str, enum.Enum):
    """Why a balance moved."""

    CREATION_COST = "CREATION_COST"
    ENTRY_FEE = "ENTRY_FEE"
    BET_ESCROW = "BET_ESCROW"
    REFUND = "REFUND"
    BET_PAYOUT = "BET_PAYOUT"
    WINNER_BONUS = "WINNER_BONUS"


class User(Base):
    """Profile row mirrored from the identity provider, plus wallet balances."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)  # identity provider user id
    nickname = Column(String(50), nullable=True)
    name = Column(String(100), nullable=True)
    profile_image = Column(String(500), nullable=True)
    gender = Column(Enum(Gender), nullable=True)
    points = Column(Integer, default=0, nullable=False)
    feathers = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        CheckConstraint("feathers >= 0", name="ck_users_feathers_non_negative"),
        Index("idx_users_nickname", "nickname"),
    )


class MatchSession(Base):
    """A single badminton match from creation to settlement."""

    __tablename__ = "match_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_type = Column(Enum(MatchType), nullable=False)
    status = Column(Enum(MatchSessionStatus), default=MatchSessionStatus.PENDING, nullable=False)
    creator_id = Column(String(64), ForeignKey("users.id"), nullable=False)

    entry_fee_points = Column(Integer, default=0, nullable=False)
    entry_fee_feathers = Column(Integer, default=0, nullable=False)
    winner_points = Column(Integer, default=0, nullable=False)
    bet_currency_type = Column(Enum(BetCurrencyType), default=BetCurrencyType.NONE, nullable=False)
    bet_amount_per_player = Column(Integer, default=0, nullable=False)
    creation_cost_points = Column(Integer, default=0, nullable=False)
    creation_cost_feathers = Column(Integer, default=0, nullable=False)
    password_hash = Column(String(100), nullable=True)  # bcrypt hash of the 6-digit password
    is_ranked = Column(Boolean, default=True, nullable=False)

    session_date = Column(DateTime(timezone=True), nullable=True)
    location = Column(String(200), nullable=True)
    court_number = Column(String(20), nullable=True)

    result = Column(Enum(MatchResult), nullable=True)
    team1_score = Column(Integer, nullable=True)
    team2_score = Column(Integer, nullable=True)

    # Bumped by every state-changing write; updates compare-and-set on it
    version = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    creator = relationship("User", foreign_keys=[creator_id])

    __table_args__ = (
        CheckConstraint("entry_fee_points >= 0", name="ck_match_sessions_entry_fee_points"),
        CheckConstraint("entry_fee_feathers >= 0", name="ck_match_sessions_entry_fee_feathers"),
        CheckConstraint("bet_amount_per_player >= 0", name="ck_match_sessions_bet_amount"),
        Index("idx_match_sessions_status_type", "status", "match_type"),
        Index("idx_match_sessions_creator", "creator_id"),
    )


class MatchParticipant(Base):
    """A player's seat in a match session."""

    __tablename__ = "match_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("match_sessions.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    team = Column(Integer, nullable=False)
    slot = Column(Integer, nullable=False)

    entry_currency = Column(Enum(Currency), default=Currency.POINTS, nullable=False)
    entry_fee_points_paid = Column(Integer, default=0, nullable=False)
    entry_fee_feathers_paid = Column(Integer, default=0, nullable=False)
    bet_amount_paid = Column(Integer, default=0, nullable=False)
    entry_fee_refunded = Column(Boolean, default=False, nullable=False)

    rating_before = Column(Integer, nullable=True)
    rating_after = Column(Integer, nullable=True)
    rating_change = Column(Integer, nullable=True)
    points_earned = Column(Integer, default=0, nullable=False)
    result_confirmed = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    session = relationship("MatchSession")
    user = relationship("User")

    __table_args__ = (
        # Slot uniqueness keeps a team from ever exceeding its size
        UniqueConstraint("session_id", "team", "slot", name="uq_match_participants_team_slot"),
        UniqueConstraint("session_id", "user_id", name="uq_match_participants_session_user"),
        CheckConstraint("team IN (1, 2)", name="ck_match_participants_team"),
        CheckConstraint("slot >= 1 AND slot <= 2", name="ck_match_participants_slot"),
        Index("idx_match_participants_user", "user_id"),
    )


class MatchInvitation(Base):
    """Invitation to join a specific team of a pending match session."""

    __tablename__ = "match_invitations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("match_sessions.id", ondelete="CASCADE"), nullable=False)
    inviter_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    invitee_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    team = Column(Integer, nullable=False)
    status = Column(Enum(InvitationStatus), default=InvitationStatus.PENDING, nullable=False)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    session = relationship("MatchSession")
    inviter = relationship("User", foreign_keys=[inviter_id])
    invitee = relationship("User", foreign_keys=[invitee_id])

    __table_args__ = (
        CheckConstraint("team IN (1, 2)", name="ck_match_invitations_team"),
        Index("idx_match_invitations_invitee_status", "invitee_id", "status"),
        Index("idx_match_invitations_inviter", "inviter_id"),
        Index("idx_match_invitations_session", "session_id"),
    )


class LedgerEntry(Base):
    """One balance movement. Debits carry a negative delta."""

    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    currency = Column(Enum(Currency), nullable=False)
    delta = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reason = Column(Enum(LedgerReason), nullable=False)
    session_id = Column(Integer, ForeignKey("match_sessions.id"), nullable=True)
    refund_of_id = Column(Integer, ForeignKey("ledger_entries.id"), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("delta <> 0", name="ck_ledger_entries_delta_non_zero"),
        Index("idx_ledger_entries_user_created", "user_id", "created_at"),
        Index("idx_ledger_entries_session", "session_id"),
    )


class RatingRecord(Base):
    """A player's rating in one match type."""

    __tablename__ = "rating_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    match_type = Column(Enum(MatchType), nullable=False)
    rating = Column(Integer, nullable=False)
    peak_rating = Column(Integer, nullable=False)
    games = Column(Integer, default=0, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("user_id", "match_type", name="uq_rating_records_user_match_type"),
        Index("idx_rating_records_type_rating", "match_type", "rating"),
    )


class RatingHistory(Base):
    """Rating movement caused by one ranked match."""

    __tablename__ = "rating_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("match_sessions.id"), nullable=False)
    match_type = Column(Enum(MatchType), nullable=False)
    rating_before = Column(Integer, nullable=False)
    rating_after = Column(Integer, nullable=False)
    rating_change = Column(Integer, nullable=False)
    is_winner = Column(Boolean, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_rating_history_user_created", "user_id", "created_at"),
    )
