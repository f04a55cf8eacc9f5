"""Value objects and Clerk payload schemas for identity synchronization."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from home_inventory.db.models import User

USER_EVENT_TYPES: frozenset[str] = frozenset({"user.created", "user.updated", "user.deleted"})


@dataclass(frozen=True, slots=True)
class Identity:
    """Canonical identity handed to the upsert engine, whatever its source."""

    external_id: str
    email: str
    display_name: str
    avatar_url: str | None
    email_verified: bool
    last_login_at: datetime | None


@dataclass(frozen=True, slots=True)
class AuthSyncResult:
    """Reference to the local user a sync resolved to."""

    id: UUID
    external_id: str
    email: str

    @classmethod
    def from_user(cls, user: User) -> AuthSyncResult:
        return cls(id=user.id, external_id=user.external_id or "", email=user.email)


# -----------------------------------------------------------------------------
# Clerk Backend API shape (GET /users/{id})
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ApiEmailAddress:
    address: str
    is_primary: bool
    verification_status: str | None = None


@dataclass(frozen=True, slots=True)
class ApiUser:
    """User object as returned by the Clerk Backend API."""

    external_id: str
    emails: tuple[ApiEmailAddress, ...] = ()
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    avatar_url: str | None = None
    last_sign_in_at: datetime | None = None


# -----------------------------------------------------------------------------
# Clerk webhook shapes
# -----------------------------------------------------------------------------


class ClerkVerification(BaseModel):
    status: str | None = None


class ClerkEmailAddressPayload(BaseModel):
    id: str | None = None
    email_address: str | None = None
    verification: ClerkVerification | None = None


class ClerkUserPayload(BaseModel):
    """``data`` of a ``user.created`` / ``user.updated`` event."""

    id: str = Field(min_length=1)
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    image_url: str | None = None
    last_sign_in_at: int | None = Field(default=None, description="Unix epoch in milliseconds")
    primary_email_address_id: str | None = None
    email_addresses: list[ClerkEmailAddressPayload] = Field(default_factory=list)


class ClerkDeletedPayload(BaseModel):
    """``data`` of a ``user.deleted`` event; Clerk may omit the id."""

    id: str | None = None
    deleted: bool | None = None


class ClerkWebhookEvent(BaseModel):
    """Envelope of a verified Clerk webhook delivery."""

    type: str
    object: str | None = "event"
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_user_event(self) -> bool:
        return self.type in USER_EVENT_TYPES
