"""
Identity upsert engine.

The single funnel through which identities reach the ``users`` table.
Each attempt runs in its own SERIALIZABLE transaction:

1. look up by external id; on a hit, refuse an email already owned by
   another row, otherwise refresh the row;
2. else look up by email; refuse rows linked to another external id and
   legacy rows when the email is unverified, otherwise link the row;
3. else insert a new active row.

Unique violations, serialization failures and deadlocks restart the whole
attempt, up to ``max_attempts``; the last storage error is re-raised as is.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import NoReturn
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from home_inventory.core.errors import (
    EmailVerificationRequiredError,
    IdentityConflictError,
    is_retryable_storage_error,
    sqlstate_of,
)
from home_inventory.core.logging import get_logger
from home_inventory.core.reporting import ErrorReporter
from home_inventory.db.models import User
from home_inventory.db.session import SERIALIZABLE
from home_inventory.modules.auth.schemas import AuthSyncResult, Identity

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
IDENTITY_CONFLICT_MESSAGE = "Email already linked to another Clerk user"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class IdentityUpsertEngine:
    """Commits identities to storage under the uniqueness invariants."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reporter: ErrorReporter,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session_factory = session_factory
        self._reporter = reporter
        self._max_attempts = max_attempts
        self._clock = clock

    async def find_by_external_id(self, external_id: str) -> User | None:
        """Read-only lookup used by the request fast path."""
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.external_id == external_id))
            return result.scalar_one_or_none()

    async def upsert(self, identity: Identity, *, reactivate: bool = True) -> AuthSyncResult:
        """
        Create or refresh the local user for ``identity``.

        ``reactivate`` controls the soft-delete pair on existing rows: when
        False (profile updates pushed by the IdP) a deleted user stays deleted.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._attempt(identity, reactivate)
            except DBAPIError as exc:
                if attempt >= self._max_attempts or not is_retryable_storage_error(exc):
                    raise
                logger.info(
                    "user_upsert_retry",
                    external_id=identity.external_id,
                    attempt=attempt,
                    sqlstate=sqlstate_of(exc),
                )

    async def soft_delete(self, external_id: str) -> int:
        """Deactivate every row linked to ``external_id``; returns the row count."""
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(User)
                .where(User.external_id == external_id)
                .values(is_active=False, deleted_at=self._clock())
            )
            count = int(result.rowcount or 0)

        logger.info("user_soft_deleted", external_id=external_id, rows=count)
        return count

    # ------------------------------------------------------------------
    # Private implementation
    # ------------------------------------------------------------------

    async def _attempt(self, identity: Identity, reactivate: bool) -> AuthSyncResult:
        async with self._session_factory() as session, session.begin():
            await session.connection(execution_options={"isolation_level": SERIALIZABLE})
            user = await self._reconcile(session, identity, reactivate)
            await session.flush()
            result = AuthSyncResult.from_user(user)
        return result

    async def _reconcile(self, session: AsyncSession, identity: Identity, reactivate: bool) -> User:
        by_external_id = await self._get_by_external_id(session, identity.external_id)
        if by_external_id is not None:
            if by_external_id.email != identity.email:
                owner = await self._get_by_email(session, identity.email)
                if owner is not None and owner.id != by_external_id.id:
                    self._raise_conflict(identity, owner)
                by_external_id.email = identity.email

            self._apply_profile(by_external_id, identity, reactivate)
            logger.info(
                "user_synced",
                user_id=str(by_external_id.id),
                external_id=identity.external_id,
            )
            return by_external_id

        by_email = await self._get_by_email(session, identity.email)
        if by_email is not None:
            if by_email.external_id and by_email.external_id != identity.external_id:
                self._raise_conflict(identity, by_email)

            if by_email.external_id is None and not identity.email_verified:
                self._reporter.capture_message(
                    "Refused to link legacy account through unverified email",
                    level="warning",
                    user_id=str(by_email.id),
                    incoming_external_id=identity.external_id,
                )
                raise EmailVerificationRequiredError(
                    "Email must be verified before it can be linked to an existing account"
                )

            by_email.external_id = identity.external_id
            self._apply_profile(by_email, identity, reactivate)
            logger.info(
                "user_linked_by_email",
                user_id=str(by_email.id),
                external_id=identity.external_id,
            )
            return by_email

        created = User(
            id=uuid4(),
            external_id=identity.external_id,
            email=identity.email,
            display_name=identity.display_name,
            avatar_url=identity.avatar_url,
            email_verified=identity.email_verified,
            is_active=True,
            deleted_at=None,
            last_login_at=identity.last_login_at,
        )
        session.add(created)
        logger.info("user_created", user_id=str(created.id), external_id=identity.external_id)
        return created

    @staticmethod
    def _apply_profile(user: User, identity: Identity, reactivate: bool) -> None:
        user.display_name = identity.display_name
        user.avatar_url = identity.avatar_url
        user.email_verified = identity.email_verified
        if identity.last_login_at is not None:
            user.last_login_at = identity.last_login_at
        if reactivate:
            user.is_active = True
            user.deleted_at = None

    def _raise_conflict(self, identity: Identity, owner: User) -> NoReturn:
        self._reporter.capture_message(
            IDENTITY_CONFLICT_MESSAGE,
            level="warning",
            email=identity.email,
            existing_user_id=str(owner.id),
            existing_external_id=owner.external_id,
            incoming_external_id=identity.external_id,
        )
        raise IdentityConflictError(IDENTITY_CONFLICT_MESSAGE)

    @staticmethod
    async def _get_by_external_id(session: AsyncSession, external_id: str) -> User | None:
        result = await session.execute(select(User).where(User.external_id == external_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def _get_by_email(session: AsyncSession, email: str) -> User | None:
        result = await session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()
