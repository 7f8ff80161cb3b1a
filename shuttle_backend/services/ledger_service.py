"""
Ledger service: atomic balance movements with transaction history.

Balances live on the users row and are only ever changed by relative,
conditional UPDATE statements, so concurrent debits/credits never lose an
update and a debit can never take a balance below zero.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_backend.database.models import Currency, LedgerEntry, LedgerReason, User
from shuttle_backend.services.errors import (
    ConcurrentModificationError,
    InsufficientFundsError,
    UserNotFoundError,
    ValidationError,
)
from shuttle_backend.utils.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from shuttle_backend.utils.datetime_utils import isoformat_or_none, utcnow

logger = logging.getLogger(__name__)


def _balance_column(currency: Currency):
    return User.points if Currency(currency) == Currency.POINTS else User.feathers


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
        raise ValidationError(f"Amount must be a non-negative integer, got {amount!r}")


async def _current_balance(session: AsyncSession, user_id: str, currency: Currency) -> Optional[int]:
    result = await session.execute(select(_balance_column(currency)).where(User.id == user_id))
    return result.scalar_one_or_none()


async def debit(
    session: AsyncSession,
    user_id: str,
    currency: Currency,
    amount: int,
    reason: LedgerReason,
    session_id: Optional[int] = None,
) -> Optional[LedgerEntry]:
    """
    Take ``amount`` of ``currency`` from a user's wallet.

    Args:
        session: Database session (the caller owns the transaction)
        user_id: Wallet owner
        currency: POINTS or FEATHERS
        amount: Non-negative amount; 0 is a no-op
        reason: Ledger reason recorded on the entry
        session_id: Match session the movement belongs to

    Returns:
        The ledger entry, or None when amount is 0

    Raises:
        InsufficientFundsError: If the balance is lower than amount (nothing is written)
        UserNotFoundError: If the user does not exist
    """
    _check_amount(amount)
    if amount == 0:
        return None
    currency = Currency(currency)
    column = _balance_column(currency)

    result = await session.execute(
        update(User)
        .where(User.id == user_id, column >= amount)
        .values({column: column - amount})
        .returning(column)
        .execution_options(synchronize_session=False)
    )
    balance_after = result.scalar_one_or_none()
    if balance_after is None:
        available = await _current_balance(session, user_id, currency)
        if available is None:
            raise UserNotFoundError(user_id)
        raise InsufficientFundsError(currency.value, amount, available)

    entry = LedgerEntry(
        user_id=user_id,
        currency=currency,
        delta=-amount,
        balance_after=balance_after,
        reason=LedgerReason(reason),
        session_id=session_id,
    )
    session.add(entry)
    await session.flush()
    logger.info(
        f"Debited {amount} {currency.value} from user {user_id} "
        f"({entry.reason.value}, session {session_id}), balance {balance_after}"
    )
    return entry


async def credit(
    session: AsyncSession,
    user_id: str,
    currency: Currency,
    amount: int,
    reason: LedgerReason,
    session_id: Optional[int] = None,
    refund_of_id: Optional[int] = None,
) -> Optional[LedgerEntry]:
    """Add ``amount`` of ``currency`` to a user's wallet. Returns None when amount is 0."""
    _check_amount(amount)
    if amount == 0:
        return None
    currency = Currency(currency)
    column = _balance_column(currency)

    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .values({column: column + amount})
        .returning(column)
        .execution_options(synchronize_session=False)
    )
    balance_after = result.scalar_one_or_none()
    if balance_after is None:
        raise UserNotFoundError(user_id)

    entry = LedgerEntry(
        user_id=user_id,
        currency=currency,
        delta=amount,
        balance_after=balance_after,
        reason=LedgerReason(reason),
        session_id=session_id,
        refund_of_id=refund_of_id,
    )
    session.add(entry)
    await session.flush()
    logger.info(
        f"Credited {amount} {currency.value} to user {user_id} "
        f"({entry.reason.value}, session {session_id}), balance {balance_after}"
    )
    return entry


async def refund(
    session: AsyncSession,
    session_id: int,
    reason: Optional[LedgerReason] = None,
    user_id: Optional[str] = None,
) -> List[LedgerEntry]:
    """
    Reverse every not-yet-refunded debit tied to a match session.

    Optionally restricted to one ledger reason and/or one user. Each debit is
    stamped with ``refunded_at`` and mirrored by a REFUND credit linked back
    to it, so running this twice refunds nothing the second time.

    Returns:
        The REFUND entries written by this call (empty when nothing was owed)
    """
    query = select(LedgerEntry).where(
        LedgerEntry.session_id == session_id,
        LedgerEntry.delta < 0,
        LedgerEntry.refunded_at.is_(None),
    )
    if reason is not None:
        query = query.where(LedgerEntry.reason == LedgerReason(reason))
    if user_id is not None:
        query = query.where(LedgerEntry.user_id == user_id)
    query = query.order_by(LedgerEntry.id).with_for_update()

    debits = (await session.execute(query)).scalars().all()
    if not debits:
        logger.info(f"No outstanding debits to refund for session {session_id}")
        return []

    now = utcnow()
    refunds = []
    for entry in debits:
        # Stamp first so a concurrent refund of the same debit cannot double-credit
        stamped = await session.execute(
            update(LedgerEntry)
            .where(LedgerEntry.id == entry.id, LedgerEntry.refunded_at.is_(None))
            .values(refunded_at=now)
            .execution_options(synchronize_session=False)
        )
        if stamped.rowcount != 1:
            raise ConcurrentModificationError(f"Ledger entry {entry.id} was refunded concurrently")
        refunds.append(
            await credit(
                session,
                entry.user_id,
                entry.currency,
                -entry.delta,
                LedgerReason.REFUND,
                session_id=session_id,
                refund_of_id=entry.id,
            )
        )
    return refunds


async def get_balance(session: AsyncSession, user_id: str) -> Dict:
    """Get a user's current points and feathers."""
    result = await session.execute(
        select(User.points, User.feathers).where(User.id == user_id)
    )
    row = result.first()
    if row is None:
        raise UserNotFoundError(user_id)
    return {"user_id": user_id, "points": row.points, "feathers": row.feathers}


def _format_entry(entry: LedgerEntry) -> Dict:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "currency": entry.currency.value,
        "delta": entry.delta,
        "balance_after": entry.balance_after,
        "reason": entry.reason.value,
        "session_id": entry.session_id,
        "refund_of_id": entry.refund_of_id,
        "refunded_at": isoformat_or_none(entry.refunded_at),
        "created_at": isoformat_or_none(entry.created_at),
    }


async def get_transactions(
    session: AsyncSession,
    user_id: str,
    currency: Optional[Currency] = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> Dict:
    """
    List a user's ledger entries, newest first.

    Returns:
        Dict with items, total_count and has_more
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    filters = [LedgerEntry.user_id == user_id]
    if currency is not None:
        filters.append(LedgerEntry.currency == Currency(currency))

    total = (
        await session.execute(select(func.count(LedgerEntry.id)).where(*filters))
    ).scalar_one()
    result = await session.execute(
        select(LedgerEntry)
        .where(*filters)
        .order_by(LedgerEntry.id.desc())
        .limit(limit)
        .offset(offset)
    )
    items = [_format_entry(e) for e in result.scalars().all()]
    return {"items": items, "total_count": total, "has_more": offset + len(items) < total}
