"""
Verification of access tokens issued by the identity provider.

Tokens are HS256 JWTs signed with the provider's shared secret; the subject
claim carries the user id.
"""

import logging
import os
from typing import Dict, Optional

from dotenv import load_dotenv
from jose import JWTError, jwt

load_dotenv()

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "authenticated")


def verify_token(token: str) -> Optional[Dict]:
    """
    Verify and decode a JWT token.

    Args:
        token: JWT token to verify

    Returns:
        Decoded token payload or None if invalid
    """
    if not JWT_SECRET:
        logger.error("SUPABASE_JWT_SECRET is not configured, rejecting token")
        return None
    try:
        options = {"verify_aud": bool(JWT_AUDIENCE)}
        return jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE or None,
            options=options,
        )
    except JWTError as e:
        logger.debug(f"Token verification failed: {e}")
        return None
