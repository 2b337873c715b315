"""
Error taxonomy shared by the permission model, moderation engine and services.

Every error carries an HTTP status and a stable machine-readable code.  The
FastAPI exception handler in main.py renders them as
{"detail": <message>, "code": <code>}.
"""

from enum import Enum


class DenyReason(str, Enum):
    """Stable reason codes surfaced to the requester when authorize() denies."""

    CANNOT_TARGET_OWNER = "cannot target owner"
    CANNOT_TARGET_SELF = "cannot target self"
    NOT_A_MEMBER = "not a member"
    INSUFFICIENT_PERMISSIONS = "insufficient permissions"
    RANK_TOO_LOW = "cannot act on equal or higher rank"
    ROLE_ABOVE_RANK = "cannot assign role at or above own rank"
    DEFAULT_ROLE_PROTECTED = "default role cannot be modified"
    PERMISSION_ESCALATION = "cannot grant permissions you do not have"
    BANNED = "banned from community"
    BLOCKED = "blocked"
    NOT_A_PARTICIPANT = "not a participant"
    TIMED_OUT = "timed out"
    ALREADY_BANNED = "already banned"


class ParleyError(Exception):
    status_code: int = 500
    code: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(ParleyError):
    status_code = 401
    code = "authentication_failed"


class AuthorizationError(ParleyError):
    status_code = 403
    code = "forbidden"

    def __init__(self, reason: DenyReason, message: str | None = None) -> None:
        super().__init__(message or reason.value)
        self.reason = reason
        # The reason code is the contract; the message may add context.
        self.code = reason.name.lower()


class ValidationError(ParleyError):
    status_code = 422
    code = "validation_error"


class NotFoundError(ParleyError):
    status_code = 404
    code = "not_found"


class ConflictError(ParleyError):
    status_code = 409
    code = "conflict"


class TransientStoreError(ParleyError):
    """Store I/O or version conflict.  Safe for the caller to retry as a whole."""

    status_code = 503
    code = "store_unavailable"
