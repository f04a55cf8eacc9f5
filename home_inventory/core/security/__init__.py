"""Security modules for authentication."""

from home_inventory.core.security.clerk_session import (
    SessionClaims,
    SessionVerificationError,
    SessionVerifier,
    VerifiedSession,
    verify_session,
)

__all__ = [
    "SessionClaims",
    "SessionVerificationError",
    "SessionVerifier",
    "VerifiedSession",
    "verify_session",
]
