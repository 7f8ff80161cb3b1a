"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-09-28 10:00:00.000000

Creates the match engine schema: users (wallet balances), match_sessions,
match_participants, match_invitations, ledger_entries, rating_records and
rating_history, with their enum types and indexes.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    "gender": ("MALE", "FEMALE"),
    "matchtype": ("MS", "WS", "MD", "WD", "XD"),
    "matchsessionstatus": ("PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED"),
    "betcurrencytype": ("NONE", "POINTS", "FEATHERS"),
    "matchresult": ("PLAYER1_WIN", "PLAYER2_WIN", "TEAM1_WIN", "TEAM2_WIN"),
    "currency": ("POINTS", "FEATHERS"),
    "invitationstatus": ("PENDING", "ACCEPTED", "DECLINED", "CANCELLED"),
    "ledgerreason": (
        "CREATION_COST", "ENTRY_FEE", "BET_ESCROW", "REFUND", "BET_PAYOUT", "WINNER_BONUS",
    ),
}


def _enum(name: str):
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamp(name: str, nullable: bool = True, server_default: bool = False):
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.text("now()") if server_default else None,
    )


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("nickname", sa.String(50)),
        sa.Column("name", sa.String(100)),
        sa.Column("profile_image", sa.String(500)),
        sa.Column("gender", _enum("gender")),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("feathers", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at", server_default=True),
        _timestamp("updated_at", server_default=True),
        sa.CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        sa.CheckConstraint("feathers >= 0", name="ck_users_feathers_non_negative"),
    )
    op.create_index("idx_users_nickname", "users", ["nickname"])

    op.create_table(
        "match_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("match_type", _enum("matchtype"), nullable=False),
        sa.Column("status", _enum("matchsessionstatus"), nullable=False),
        sa.Column("creator_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("entry_fee_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("entry_fee_feathers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("winner_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bet_currency_type", _enum("betcurrencytype"), nullable=False),
        sa.Column("bet_amount_per_player", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("creation_cost_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("creation_cost_feathers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("password_hash", sa.String(100)),
        sa.Column("is_ranked", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("session_date"),
        sa.Column("location", sa.String(200)),
        sa.Column("court_number", sa.String(20)),
        sa.Column("result", _enum("matchresult")),
        sa.Column("team1_score", sa.Integer()),
        sa.Column("team2_score", sa.Integer()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("created_at", server_default=True),
        _timestamp("started_at"),
        _timestamp("completed_at"),
        _timestamp("cancelled_at"),
        sa.CheckConstraint("entry_fee_points >= 0", name="ck_match_sessions_entry_fee_points"),
        sa.CheckConstraint("entry_fee_feathers >= 0", name="ck_match_sessions_entry_fee_feathers"),
        sa.CheckConstraint("bet_amount_per_player >= 0", name="ck_match_sessions_bet_amount"),
    )
    op.create_index("idx_match_sessions_status_type", "match_sessions", ["status", "match_type"])
    op.create_index("idx_match_sessions_creator", "match_sessions", ["creator_id"])

    op.create_table(
        "match_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id", sa.Integer(),
            sa.ForeignKey("match_sessions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("team", sa.Integer(), nullable=False),
        sa.Column("slot", sa.Integer(), nullable=False),
        sa.Column("entry_currency", _enum("currency"), nullable=False),
        sa.Column("entry_fee_points_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("entry_fee_feathers_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bet_amount_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("entry_fee_refunded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rating_before", sa.Integer()),
        sa.Column("rating_after", sa.Integer()),
        sa.Column("rating_change", sa.Integer()),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("result_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at", server_default=True),
        sa.UniqueConstraint("session_id", "team", "slot", name="uq_match_participants_team_slot"),
        sa.UniqueConstraint("session_id", "user_id", name="uq_match_participants_session_user"),
        sa.CheckConstraint("team IN (1, 2)", name="ck_match_participants_team"),
        sa.CheckConstraint("slot >= 1 AND slot <= 2", name="ck_match_participants_slot"),
    )
    op.create_index("idx_match_participants_user", "match_participants", ["user_id"])

    op.create_table(
        "match_invitations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id", sa.Integer(),
            sa.ForeignKey("match_sessions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("inviter_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("invitee_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("team", sa.Integer(), nullable=False),
        sa.Column("status", _enum("invitationstatus"), nullable=False),
        sa.Column("message", sa.Text()),
        _timestamp("created_at", nullable=False),
        _timestamp("expires_at", nullable=False),
        _timestamp("responded_at"),
        sa.CheckConstraint("team IN (1, 2)", name="ck_match_invitations_team"),
    )
    op.create_index(
        "idx_match_invitations_invitee_status", "match_invitations", ["invitee_id", "status"]
    )
    op.create_index("idx_match_invitations_inviter", "match_invitations", ["inviter_id"])
    op.create_index("idx_match_invitations_session", "match_invitations", ["session_id"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("currency", _enum("currency"), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", _enum("ledgerreason"), nullable=False),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("match_sessions.id")),
        sa.Column("refund_of_id", sa.Integer(), sa.ForeignKey("ledger_entries.id")),
        _timestamp("refunded_at"),
        _timestamp("created_at", server_default=True),
        sa.CheckConstraint("delta <> 0", name="ck_ledger_entries_delta_non_zero"),
    )
    op.create_index("idx_ledger_entries_user_created", "ledger_entries", ["user_id", "created_at"])
    op.create_index("idx_ledger_entries_session", "ledger_entries", ["session_id"])

    op.create_table(
        "rating_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("match_type", _enum("matchtype"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("peak_rating", sa.Integer(), nullable=False),
        sa.Column("games", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("updated_at", server_default=True),
        sa.UniqueConstraint("user_id", "match_type", name="uq_rating_records_user_match_type"),
    )
    op.create_index("idx_rating_records_type_rating", "rating_records", ["match_type", "rating"])

    op.create_table(
        "rating_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("match_sessions.id"), nullable=False),
        sa.Column("match_type", _enum("matchtype"), nullable=False),
        sa.Column("rating_before", sa.Integer(), nullable=False),
        sa.Column("rating_after", sa.Integer(), nullable=False),
        sa.Column("rating_change", sa.Integer(), nullable=False),
        sa.Column("is_winner", sa.Boolean(), nullable=False),
        _timestamp("created_at", server_default=True),
    )
    op.create_index("idx_rating_history_user_created", "rating_history", ["user_id", "created_at"])


def downgrade() -> None:
    for table in (
        "rating_history",
        "rating_records",
        "ledger_entries",
        "match_invitations",
        "match_participants",
        "match_sessions",
        "users",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
