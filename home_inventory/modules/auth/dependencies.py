"""
Authentication dependency for protected routes.

``CurrentUser`` verifies the Clerk session and then makes sure a local
user row exists for it, provisioning or linking one on first contact.
"""

from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends

from home_inventory.core.errors import AuthSyncError
from home_inventory.core.logging import get_logger
from home_inventory.core.security.clerk_session import VerifiedSession
from home_inventory.core.services import Services

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Local user resolved for the current request."""

    id: UUID
    external_id: str
    email: str


async def require_user(session: VerifiedSession, services: Services) -> AuthenticatedUser:
    try:
        result = await services.user_sync.ensure_user_for_request(session.sub, session.raw_claims)
    except AuthSyncError as exc:
        logger.warning("request_user_sync_rejected", external_id=session.sub, code=exc.code)
        raise
    except Exception as exc:
        logger.error("request_user_sync_failed", external_id=session.sub, error=str(exc))
        raise AuthSyncError(
            "Failed to sync authenticated user",
            code="INTERNAL_ERROR",
            status_code=500,
        ) from exc

    return AuthenticatedUser(id=result.id, external_id=result.external_id, email=result.email)


CurrentUser = Annotated[AuthenticatedUser, Depends(require_user)]
