"""
Business errors raised by the match services.

Every error is a ValueError carrying the HTTP status the routes answer with.
"""


class MatchServiceError(ValueError):
    status_code = 400


class ValidationError(MatchServiceError):
    status_code = 400


class InsufficientFundsError(MatchServiceError):
    status_code = 400

    def __init__(self, currency: str, required: int, available: int):
        self.currency = currency
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient {currency.lower()}: required {required}, available {available}"
        )


class NotFoundError(MatchServiceError):
    status_code = 404


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id):
        super().__init__(f"Match session {session_id} not found")


class InvitationNotFoundError(NotFoundError):
    def __init__(self, invitation_id):
        super().__init__(f"Invitation {invitation_id} not found")


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id):
        super().__init__(f"User {user_id} not found")


class ForbiddenError(MatchServiceError):
    status_code = 403


class WrongPasswordError(ForbiddenError):
    def __init__(self):
        super().__init__("Incorrect session password")


class NotSessionCreatorError(ForbiddenError):
    def __init__(self, action: str):
        super().__init__(f"Only the session creator can {action} this match")


class NotParticipantError(ForbiddenError):
    def __init__(self, detail: str = "You are not a participant of this match"):
        super().__init__(detail)


class ConflictError(MatchServiceError):
    status_code = 409


class SessionFullError(ConflictError):
    def __init__(self, detail: str = "Match session is full"):
        super().__init__(detail)


class AlreadyJoinedError(ConflictError):
    pass


AlreadyParticipantError = AlreadyJoinedError


class InvalidSessionStateError(ConflictError):
    pass


class InvitationExpiredError(ConflictError):
    def __init__(self):
        super().__init__("Invitation has expired")


class DuplicateInvitationError(ConflictError):
    def __init__(self):
        super().__init__("A pending invitation already exists for this player")


class InvalidInvitationStateError(ConflictError):
    pass


class ConcurrentModificationError(Exception):
    """A compare-and-set write matched no row; the transaction should be retried."""


class TransientDatabaseError(Exception):
    """Retries were exhausted while racing concurrent writers."""

    status_code = 503
