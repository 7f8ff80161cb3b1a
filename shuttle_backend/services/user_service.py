"""
User profile lookups.
"""

from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_backend.database.models import User
from shuttle_backend.utils.datetime_utils import isoformat_or_none


async def get_user_by_id(session: AsyncSession, user_id: str) -> Optional[Dict]:
    """
    Get user by ID.

    Args:
        session: Database session
        user_id: Identity provider user id

    Returns:
        User dictionary or None if not found
    """
    user = await session.get(User, user_id)
    if user is None:
        return None
    return {
        "id": user.id,
        "nickname": user.nickname,
        "name": user.name,
        "profile_image": user.profile_image,
        "gender": user.gender.value if user.gender else None,
        "points": user.points,
        "feathers": user.feathers,
        "created_at": isoformat_or_none(user.created_at),
    }
