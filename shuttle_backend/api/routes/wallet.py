"""Wallet (points / feathers) route handlers."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_backend.api.auth_dependencies import get_current_user
from shuttle_backend.api.routes import to_http_exception
from shuttle_backend.database.db import get_db_session
from shuttle_backend.services import ledger_service
from shuttle_backend.services.errors import ValidationError

router = APIRouter()


@router.get("/api/wallet/balance")
async def get_balance(
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Current points and feathers of the signed-in user."""
    try:
        return await ledger_service.get_balance(session, user["id"])
    except Exception as e:
        raise to_http_exception(e, "fetching balance")


@router.get("/api/wallet/transactions")
async def get_transactions(
    currency: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Ledger history of the signed-in user, newest first."""
    try:
        if currency is not None and currency.upper() not in ("POINTS", "FEATHERS"):
            raise ValidationError("Currency must be POINTS or FEATHERS")
        return await ledger_service.get_transactions(
            session,
            user["id"],
            currency=currency.upper() if currency else None,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        raise to_http_exception(e, "fetching transactions")
