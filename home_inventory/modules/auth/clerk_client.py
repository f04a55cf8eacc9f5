"""
Clerk Backend API client for user lookups.

Only ``GET /users/{id}`` is needed: Request-Time Sync calls it the first
time an authenticated Clerk user has no local row. Every failure surfaces
as ``ClerkAPIError`` so callers can classify it by status code.
"""

from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import quote

import httpx

from home_inventory.core.config import Settings
from home_inventory.core.logging import get_logger
from home_inventory.modules.auth.identity import millis_to_datetime
from home_inventory.modules.auth.schemas import ApiEmailAddress, ApiUser

logger = get_logger(__name__)

# Lookup failures that will not go away by retrying or falling back.
PERMANENT_LOOKUP_STATUSES = frozenset({403, 404})


class ClerkAPIError(Exception):
    """A Clerk Backend API call failed; ``status_code`` is None for transport errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_permanent(self) -> bool:
        return self.status_code in PERMANENT_LOOKUP_STATUSES


class IdentityProvider(Protocol):
    """IdP lookup used by Request-Time Sync."""

    async def get_user(self, external_id: str) -> ApiUser:
        ...


def parse_api_user(data: dict[str, Any]) -> ApiUser:
    """Convert a Clerk user JSON object into an ``ApiUser``."""
    primary_id = data.get("primary_email_address_id")
    emails: list[ApiEmailAddress] = []
    for raw in data.get("email_addresses") or []:
        if not isinstance(raw, dict):
            continue
        verification = raw.get("verification") or {}
        emails.append(
            ApiEmailAddress(
                address=str(raw.get("email_address") or ""),
                is_primary=primary_id is not None and raw.get("id") == primary_id,
                verification_status=verification.get("status")
                if isinstance(verification, dict)
                else None,
            )
        )

    last_sign_in = data.get("last_sign_in_at")
    return ApiUser(
        external_id=str(data["id"]),
        emails=tuple(emails),
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        username=data.get("username"),
        avatar_url=data.get("image_url") or None,
        last_sign_in_at=millis_to_datetime(last_sign_in) if isinstance(last_sign_in, int) else None,
    )


class ClerkClient:
    """Thin wrapper around the Clerk Backend REST API."""

    def __init__(
        self,
        secret_key: str,
        api_url: str = "https://api.clerk.com/v1",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = http_client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers={"Authorization": f"Bearer {secret_key}"},
            timeout=timeout,
            follow_redirects=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> ClerkClient:
        return cls(
            secret_key=settings.clerk_secret_key,
            api_url=settings.clerk_api_url,
            timeout=settings.clerk_api_timeout,
        )

    async def get_user(self, external_id: str) -> ApiUser:
        """Fetch a user by Clerk user id."""
        try:
            resp = await self._client.get(f"/users/{quote(external_id, safe='')}")
        except httpx.HTTPError as exc:
            logger.warning("clerk_user_lookup_transport_error", external_id=external_id, error=str(exc))
            raise ClerkAPIError(f"Clerk API request failed: {exc}") from exc

        if resp.status_code >= 400:
            logger.warning(
                "clerk_user_lookup_failed",
                external_id=external_id,
                status_code=resp.status_code,
            )
            raise ClerkAPIError(
                f"Clerk API returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise ClerkAPIError("Clerk API returned a non-JSON body") from exc
        if not isinstance(data, dict) or not data.get("id"):
            raise ClerkAPIError("Clerk API returned an unexpected user object")

        return parse_api_user(data)

    async def aclose(self) -> None:
        await self._client.aclose()
