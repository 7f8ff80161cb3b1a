"""
Tests for db.run_transaction: commit, rollback and bounded retries.
"""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from shuttle_backend.database import db
from shuttle_backend.database.models import User
from shuttle_backend.services.errors import (
    ConcurrentModificationError,
    SessionFullError,
    TransientDatabaseError,
)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(db, "TRANSACTION_RETRY_BASE_DELAY", 0)


@pytest.mark.asyncio
async def test_commits_on_success(db_session):
    async def add_user(session, user_id):
        session.add(User(id=user_id, points=5, feathers=0))
        return user_id

    assert await db.run_transaction(add_user, "alice") == "alice"

    users = (await db_session.execute(select(User.id))).scalars().all()
    assert users == ["alice"]


@pytest.mark.asyncio
async def test_rolls_back_business_errors_without_retry(db_session):
    calls = []

    async def add_then_fail(session):
        calls.append(1)
        session.add(User(id="bob", points=0, feathers=0))
        await session.flush()
        raise SessionFullError()

    with pytest.raises(SessionFullError):
        await db.run_transaction(add_then_fail)

    assert len(calls) == 1
    assert (await db_session.execute(select(User.id))).scalars().all() == []


@pytest.mark.asyncio
async def test_retries_lost_races_then_succeeds(test_engine):
    attempts = []

    async def flaky(session):
        attempts.append(1)
        if len(attempts) < 3:
            raise ConcurrentModificationError("lost")
        return "done"

    assert await db.run_transaction(flaky) == "done"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_gives_up_with_transient_error(test_engine):
    attempts = []

    async def always_loses(session):
        attempts.append(1)
        raise ConcurrentModificationError("lost")

    with pytest.raises(TransientDatabaseError):
        await db.run_transaction(always_loses)
    assert len(attempts) == db.MAX_TRANSACTION_ATTEMPTS


@pytest.mark.asyncio
async def test_unique_collision_is_retried(db_session):
    db_session.add(User(id="carol", points=0, feathers=0))
    await db_session.commit()
    attempts = []

    async def insert_duplicate(session):
        attempts.append(1)
        session.add(User(id="carol", points=0, feathers=0))
        await session.flush()

    with pytest.raises(TransientDatabaseError):
        await db.run_transaction(insert_duplicate)
    assert len(attempts) == db.MAX_TRANSACTION_ATTEMPTS


@pytest.mark.asyncio
async def test_check_violation_is_not_retried(test_engine):
    attempts = []

    async def insert_negative_balance(session):
        attempts.append(1)
        session.add(User(id="dave", points=-5, feathers=0))
        await session.flush()

    with pytest.raises(IntegrityError):
        await db.run_transaction(insert_negative_balance)
    assert len(attempts) == 1
