"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error translation) lives here; every
sub-router imports what it needs from this package.
"""

import logging
import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from shuttle_backend.services.errors import MatchServiceError, TransientDatabaseError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)


# ---------------------------------------------------------------------------
# Shared error translation
# ---------------------------------------------------------------------------
def to_http_exception(error: Exception, action: str) -> HTTPException:
    """Map a service error onto the HTTP status it carries; anything else is a 500."""
    if isinstance(error, MatchServiceError):
        return HTTPException(status_code=error.status_code, detail=str(error))
    if isinstance(error, TransientDatabaseError):
        logger.warning(f"Transient failure while {action}: {error}")
        return HTTPException(status_code=503, detail=str(error))
    logger.error(f"Error {action}: {error}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Error {action}")


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from shuttle_backend.api.routes.sessions import router as sessions_router  # noqa: E402
from shuttle_backend.api.routes.invitations import router as invitations_router  # noqa: E402
from shuttle_backend.api.routes.ratings import router as ratings_router  # noqa: E402
from shuttle_backend.api.routes.wallet import router as wallet_router  # noqa: E402

router = APIRouter()
router.include_router(sessions_router)
router.include_router(invitations_router)
router.include_router(ratings_router)
router.include_router(wallet_router)
