"""
User synchronization between Clerk and the local ``users`` table.

Two entry points converge on ``IdentityUpsertEngine``:

- ``RequestTimeSync.ensure`` runs for every authenticated request. An
  existing active user short-circuits; otherwise the user is looked up in
  Clerk (falling back to session claims while Clerk is unreachable) and
  upserted.
- ``WebhookSync.apply`` runs for every verified ``user.*`` lifecycle event.
  Deletions soft-delete, creations and updates upsert.

Typed ``AuthSyncError`` subclasses propagate unchanged to the caller.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from home_inventory.core.errors import (
    ClerkUserNotAccessibleError,
    EmailMissingError,
    InvalidWebhookPayloadError,
    UserInactiveError,
)
from home_inventory.core.logging import get_logger
from home_inventory.core.reporting import ErrorReporter
from home_inventory.modules.auth.clerk_client import PERMANENT_LOOKUP_STATUSES, IdentityProvider
from home_inventory.modules.auth.identity import (
    ApiIdentitySource,
    WebhookIdentitySource,
    identity_from_claims,
    resolve_identity,
)
from home_inventory.modules.auth.schemas import (
    AuthSyncResult,
    ClerkDeletedPayload,
    ClerkUserPayload,
    ClerkWebhookEvent,
    Identity,
)
from home_inventory.modules.auth.upsert import IdentityUpsertEngine

logger = get_logger(__name__)

DELETED_WITHOUT_ID_MESSAGE = "Received Clerk user.deleted webhook without user id"


def lookup_status(error: BaseException) -> int | None:
    """HTTP status attached to an IdP lookup failure, if any."""
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status
    return None


class RequestTimeSync:
    """Resolves (and lazily provisions) the local user behind a verified session."""

    def __init__(
        self,
        engine: IdentityUpsertEngine,
        idp: IdentityProvider,
        reporter: ErrorReporter,
    ) -> None:
        self._engine = engine
        self._idp = idp
        self._reporter = reporter

    async def ensure(
        self,
        external_id: str,
        claims: Mapping[str, Any] | None = None,
    ) -> AuthSyncResult:
        """
        Return the local user for an already-verified Clerk user id.

        Raises:
            UserInactiveError: the local user is soft-deleted or deactivated.
            ClerkUserNotAccessibleError: Clerk permanently refused the lookup.
            EmailMissingError: neither Clerk nor the claims yield an email.
            IdentityConflictError, EmailVerificationRequiredError: from the upsert.
        """
        existing = await self._engine.find_by_external_id(external_id)
        if existing is not None:
            if existing.is_soft_deleted:
                error = UserInactiveError("User account is inactive")
                self._reporter.capture_exception(
                    error,
                    external_id=external_id,
                    user_id=str(existing.id),
                    is_active=existing.is_active,
                    deleted_at=existing.deleted_at.isoformat() if existing.deleted_at else None,
                    stage="ensure_user_for_request",
                )
                raise error
            return AuthSyncResult.from_user(existing)

        identity = await self._identity_from_idp(external_id)
        if identity is None:
            try:
                identity = identity_from_claims(external_id, claims)
            except EmailMissingError as error:
                self._reporter.capture_exception(
                    error,
                    external_id=external_id,
                    claim_keys=sorted(claims) if claims else [],
                    stage="ensure_user_for_request",
                )
                raise
            logger.info("user_identity_from_claims", external_id=external_id)

        return await self._engine.upsert(identity, reactivate=True)

    async def _identity_from_idp(self, external_id: str) -> Identity | None:
        """Identity from the Clerk API; ``None`` means fall back to claims."""
        try:
            api_user = await self._idp.get_user(external_id)
        except Exception as exc:
            status = lookup_status(exc)
            permanent = status in PERMANENT_LOOKUP_STATUSES
            self._reporter.capture_exception(
                exc,
                external_id=external_id,
                stage="clerk_get_user",
                clerk_lookup_status=status,
                is_permanent_lookup_error=permanent,
            )
            if permanent:
                raise ClerkUserNotAccessibleError(
                    "Authenticated Clerk user could not be validated"
                ) from exc
            return None

        try:
            return resolve_identity(ApiIdentitySource(api_user))
        except EmailMissingError:
            logger.info("clerk_user_without_email", external_id=external_id)
            return None


class WebhookSync:
    """Applies Clerk ``user.*`` lifecycle events to local storage."""

    def __init__(self, engine: IdentityUpsertEngine, reporter: ErrorReporter) -> None:
        self._engine = engine
        self._reporter = reporter

    async def apply(self, event: ClerkWebhookEvent) -> None:
        """
        Apply one verified lifecycle event.

        Safe to call repeatedly with the same event: a repeated upsert is a
        no-op update and a repeated soft delete rewrites the same flags.
        """
        if event.type == "user.deleted":
            await self._apply_deleted(event)
            return

        if event.type not in ("user.created", "user.updated"):
            logger.info("clerk_webhook_event_ignored", event_type=event.type)
            return

        try:
            payload = ClerkUserPayload.model_validate(event.data)
        except ValidationError as exc:
            raise InvalidWebhookPayloadError(
                "Clerk webhook payload is not a valid user object"
            ) from exc

        try:
            identity = resolve_identity(WebhookIdentitySource(payload))
        except EmailMissingError as exc:
            error = EmailMissingError(
                "Clerk webhook payload missing a usable email address",
                status_code=400,
            )
            self._reporter.capture_exception(
                error,
                event_type=event.type,
                external_id=payload.id,
            )
            raise error from exc

        # Only an explicit (re-)creation may bring a soft-deleted user back.
        await self._engine.upsert(identity, reactivate=event.type == "user.created")

    async def _apply_deleted(self, event: ClerkWebhookEvent) -> None:
        try:
            payload = ClerkDeletedPayload.model_validate(event.data)
        except ValidationError as exc:
            raise InvalidWebhookPayloadError(
                "Clerk user.deleted payload is malformed"
            ) from exc

        if not payload.id:
            self._reporter.capture_message(DELETED_WITHOUT_ID_MESSAGE, level="warning")
            return

        await self._engine.soft_delete(payload.id)


class UserSyncService:
    """Facade consumed by the authentication dependency and the webhook route."""

    def __init__(
        self,
        engine: IdentityUpsertEngine,
        idp: IdentityProvider,
        reporter: ErrorReporter,
    ) -> None:
        self.request_sync = RequestTimeSync(engine, idp, reporter)
        self.webhook_sync = WebhookSync(engine, reporter)

    async def ensure_user_for_request(
        self,
        external_id: str,
        claims: Mapping[str, Any] | None = None,
    ) -> AuthSyncResult:
        return await self.request_sync.ensure(external_id, claims)

    async def apply_lifecycle_event(self, event: ClerkWebhookEvent) -> None:
        await self.webhook_sync.apply(event)
