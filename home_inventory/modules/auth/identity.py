"""
Identity resolution.

Turns the three shapes an identity can arrive in (webhook user payload,
Clerk Backend API user, request session claims) into one ``Identity``.
Everything here is pure; a source without a usable email raises
``EmailMissingError``.

Display name order: "first last" -> username -> formatted email local part
-> "User".
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from home_inventory.core.errors import EmailMissingError
from home_inventory.modules.auth.schemas import ApiUser, ClerkUserPayload, Identity

FALLBACK_DISPLAY_NAME = "User"
# Matches the users.display_name column width.
MAX_DISPLAY_NAME_LENGTH = 255
VERIFIED_STATUS = "verified"
CLAIM_EMAIL_KEYS = ("email", "email_address")

_LOCAL_PART_SEPARATORS = re.compile(r"[._-]+")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def format_display_name(raw: str) -> str:
    """``"jane.doe_smith"`` -> ``"Jane Doe Smith"``."""
    words = _LOCAL_PART_SEPARATORS.sub(" ", raw).split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def resolve_display_name(
    *,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    username: str | None = None,
) -> str:
    full_name = f"{first_name or ''} {last_name or ''}".strip()
    if full_name:
        return _clip(full_name)

    if username and username.strip():
        return _clip(username.strip())

    local_part = email.split("@")[0]
    return _clip(format_display_name(local_part)) or FALLBACK_DISPLAY_NAME


def _clip(name: str) -> str:
    return name[:MAX_DISPLAY_NAME_LENGTH].rstrip()


def claim_email(claims: Mapping[str, Any] | None) -> str | None:
    """First non-blank string among the accepted email claim keys, normalized."""
    if not claims:
        return None
    for key in CLAIM_EMAIL_KEYS:
        value = claims.get(key)
        if isinstance(value, str) and value.strip():
            return normalize_email(value)
    return None


def millis_to_datetime(value: int | None) -> datetime | None:
    """Epoch milliseconds to an aware datetime; out-of-range values become ``None``."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    except (ValueError, OverflowError, OSError):
        return None


@dataclass(frozen=True, slots=True)
class _EmailCandidate:
    address: str | None
    is_primary: bool
    verified: bool


def _select_email(candidates: Iterable[_EmailCandidate]) -> tuple[str, bool] | None:
    """Primary-flagged email, else the first listed one; ``None`` when unusable."""
    listed = list(candidates)
    if not listed:
        return None
    selected = next((c for c in listed if c.is_primary), listed[0])
    if not selected.address or not selected.address.strip():
        return None
    return normalize_email(selected.address), selected.verified


class IdentitySource(Protocol):
    """Anything that can produce a canonical ``Identity``."""

    def resolve(self) -> Identity:
        ...


@dataclass(frozen=True, slots=True)
class WebhookIdentitySource:
    """Identity carried by a ``user.created`` / ``user.updated`` webhook."""

    payload: ClerkUserPayload

    def resolve(self) -> Identity:
        payload = self.payload
        primary_id = payload.primary_email_address_id
        selected = _select_email(
            _EmailCandidate(
                address=email.email_address,
                is_primary=primary_id is not None and email.id == primary_id,
                verified=email.verification is not None
                and email.verification.status == VERIFIED_STATUS,
            )
            for email in payload.email_addresses
        )
        if selected is None:
            raise EmailMissingError("Clerk webhook payload missing a usable email address")

        email, verified = selected
        return Identity(
            external_id=payload.id,
            email=email,
            display_name=resolve_display_name(
                email=email,
                first_name=payload.first_name,
                last_name=payload.last_name,
                username=payload.username,
            ),
            avatar_url=payload.image_url or None,
            email_verified=verified,
            last_login_at=millis_to_datetime(payload.last_sign_in_at),
        )


@dataclass(frozen=True, slots=True)
class ApiIdentitySource:
    """Identity looked up through the Clerk Backend API."""

    user: ApiUser

    def resolve(self) -> Identity:
        user = self.user
        selected = _select_email(
            _EmailCandidate(
                address=email.address,
                is_primary=email.is_primary,
                verified=email.verification_status == VERIFIED_STATUS,
            )
            for email in user.emails
        )
        if selected is None:
            raise EmailMissingError("Clerk user has no usable email address")

        email, verified = selected
        return Identity(
            external_id=user.external_id,
            email=email,
            display_name=resolve_display_name(
                email=email,
                first_name=user.first_name,
                last_name=user.last_name,
                username=user.username,
            ),
            avatar_url=user.avatar_url or None,
            email_verified=verified,
            last_login_at=user.last_sign_in_at,
        )


def resolve_identity(source: IdentitySource) -> Identity:
    return source.resolve()


def identity_from_claims(external_id: str, claims: Mapping[str, Any] | None) -> Identity:
    """
    Last-resort identity from session claims, used when the IdP API is down.

    Claims are not authoritative for verification, so the email is treated
    as unverified.
    """
    email = claim_email(claims)
    if email is None:
        raise EmailMissingError("Authenticated Clerk user is missing a usable email address")

    return Identity(
        external_id=external_id,
        email=email,
        display_name=resolve_display_name(email=email),
        avatar_url=None,
        email_verified=False,
        last_login_at=None,
    )
