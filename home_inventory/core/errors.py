"""
Typed failures raised by identity synchronization.

Each error carries a stable machine-readable ``code`` and the HTTP status
the calling layer should answer with. The sync services never interpret
the status themselves; routers and dependencies render it as
``{"code": ..., "message": ...}``.
"""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError, IntegrityError

# SQLSTATEs for which a fresh serializable attempt can succeed.
UNIQUE_VIOLATION = "23505"
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
RETRYABLE_SQLSTATES = frozenset({UNIQUE_VIOLATION, SERIALIZATION_FAILURE, DEADLOCK_DETECTED})


class AuthSyncError(Exception):
    """Base class for identity sync failures."""

    default_code = "AUTH_USER_SYNC_FAILED"
    default_status = 401

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    def to_response(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, status_code={self.status_code})"


class EmailMissingError(AuthSyncError):
    """No usable email in IdP data, webhook payload or session claims."""

    default_code = "AUTH_EMAIL_MISSING"
    default_status = 401


class UserInactiveError(AuthSyncError):
    """Local user exists but is deactivated or soft-deleted."""

    default_code = "AUTH_USER_INACTIVE"
    default_status = 403


class ClerkUserNotAccessibleError(AuthSyncError):
    """The IdP answered the user lookup with a permanent failure."""

    default_code = "AUTH_CLERK_USER_NOT_ACCESSIBLE"
    default_status = 401


class IdentityConflictError(AuthSyncError):
    """The incoming email is already owned by a different external identity."""

    default_code = "AUTH_IDENTITY_CONFLICT"
    default_status = 409


class EmailVerificationRequiredError(AuthSyncError):
    """Linking a legacy account requires a verified email."""

    default_code = "AUTH_EMAIL_VERIFICATION_REQUIRED"
    default_status = 403


class InvalidWebhookPayloadError(AuthSyncError):
    """A lifecycle event payload does not match the expected user shape."""

    default_code = "INVALID_WEBHOOK_PAYLOAD"
    default_status = 400


def sqlstate_of(exc: BaseException) -> str | None:
    """Return the driver SQLSTATE behind a SQLAlchemy DBAPI error, if exposed."""
    if not isinstance(exc, DBAPIError):
        return None
    orig = exc.orig
    for attr in ("sqlstate", "pgcode"):
        value = getattr(orig, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def is_retryable_storage_error(exc: BaseException) -> bool:
    """
    Classify storage errors that a new serializable attempt may resolve.

    Unique violations, serialization failures and deadlocks are retryable.
    An ``IntegrityError`` from a driver that exposes no SQLSTATE is treated
    as a unique violation, the only constraint the upsert can trip.
    """
    if not isinstance(exc, DBAPIError):
        return False
    state = sqlstate_of(exc)
    if state is not None:
        return state in RETRYABLE_SQLSTATES
    return isinstance(exc, IntegrityError)
