"""
Clerk session token verification.

Session JWTs are RS256-signed by the Clerk instance; public keys come from
its JWKS endpoint. Verification yields the subject (Clerk user id) and the
raw claims map that Request-Time Sync may fall back to.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Annotated, Any, cast

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt  # type: ignore[import-untyped]

from home_inventory.core.config import Settings
from home_inventory.core.errors import AuthSyncError
from home_inventory.core.logging import get_logger

logger = get_logger(__name__)
optional_security = HTTPBearer(auto_error=False)

SESSION_COOKIE = "__session"


class SessionVerificationError(AuthSyncError):
    """The request carries no valid Clerk session."""

    default_code = "TOKEN_INVALID"
    default_status = 401


@dataclass(frozen=True)
class SessionClaims:
    """Verified session token claims."""

    sub: str
    email: str | None
    raw_claims: dict[str, Any] = field(default_factory=dict)


class JWKSClient:
    """
    JWKS (JSON Web Key Set) client for fetching and caching public keys.

    Implements key rotation handling by refetching JWKS on unknown key ids.
    """

    def __init__(self, jwks_url: str, http_client: httpx.AsyncClient | None = None) -> None:
        self._jwks_url = jwks_url
        self._http_client = http_client
        self._keys: dict[str, dict[str, Any]] = {}
        self._last_fetch: datetime | None = None
        self._cache_duration_seconds = 3600  # 1 hour

    async def get_signing_key(self, kid: str) -> dict[str, Any]:
        """
        Get the signing key for a given key ID.

        Fetches JWKS if cache is stale or key is not found.
        """
        now = datetime.now(UTC)
        should_refresh = (
            self._last_fetch is None
            or (now - self._last_fetch).total_seconds() > self._cache_duration_seconds
            or kid not in self._keys
        )

        if should_refresh:
            await self._fetch_jwks()

        if kid not in self._keys:
            raise SessionVerificationError("Token signing key not found")

        return self._keys[kid]

    async def _fetch_jwks(self) -> None:
        """Fetch and parse JWKS from the Clerk instance."""
        try:
            if self._http_client is not None:
                response = await self._http_client.get(self._jwks_url, timeout=10.0)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(self._jwks_url, timeout=10.0)
            response.raise_for_status()
            jwks_data = cast(dict[str, Any], response.json())
        except httpx.HTTPError as e:
            logger.error("jwks_fetch_failed", error=str(e))
            raise SessionVerificationError(
                "Unable to fetch signing keys from identity provider",
                code="JWKS_UNAVAILABLE",
                status_code=503,
            ) from e

        self._keys = {}
        for key_data in jwks_data.get("keys", []):
            if isinstance(key_data, dict) and "kid" in key_data and key_data.get("use", "sig") == "sig":
                self._keys[str(key_data["kid"])] = key_data

        self._last_fetch = datetime.now(UTC)
        logger.info("jwks_refreshed", key_count=len(self._keys))


class SessionVerifier:
    """Validates Clerk session tokens (signature, expiry, issuer, azp)."""

    def __init__(
        self,
        jwks: JWKSClient,
        issuer: str | None = None,
        authorized_parties: list[str] | None = None,
    ) -> None:
        self._jwks = jwks
        self._issuer = issuer
        self._authorized_parties = authorized_parties or []

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionVerifier":
        return cls(
            JWKSClient(settings.clerk_jwks_url),
            issuer=settings.clerk_issuer,
            authorized_parties=settings.clerk_authorized_parties_all,
        )

    async def verify(self, token: str) -> SessionClaims:
        try:
            unverified_header = jwt.get_unverified_header(token)
        except JWTError as e:
            logger.warning("session_token_malformed", error=str(e))
            raise SessionVerificationError("Invalid or expired token") from e

        kid = unverified_header.get("kid")
        if not kid:
            raise SessionVerificationError("Token missing key ID")

        signing_key = await self._jwks.get_signing_key(kid)

        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                signing_key,
                algorithms=["RS256"],
                issuer=self._issuer,
                options={
                    "verify_aud": False,  # Clerk session tokens carry no audience
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iat": True,
                    "verify_iss": self._issuer is not None,
                },
            )
        except JWTError as e:
            logger.warning("session_token_verification_failed", error=str(e))
            raise SessionVerificationError("Invalid or expired token") from e

        azp = payload.get("azp")
        if self._authorized_parties and azp not in self._authorized_parties:
            logger.warning("session_token_unauthorized_party", azp=azp)
            raise SessionVerificationError("Invalid token authorized party")

        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise SessionVerificationError("Token missing subject claim", code="UNAUTHORIZED")

        email = payload.get("email")
        return SessionClaims(
            sub=sub,
            email=email if isinstance(email, str) else None,
            raw_claims=payload,
        )


async def verify_session(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(optional_security)],
) -> SessionClaims:
    """
    Dependency that verifies the Clerk session from the bearer header or cookie.
    """
    token = credentials.credentials if credentials else request.cookies.get(SESSION_COOKIE)
    if not token:
        raise SessionVerificationError("Authentication required", code="UNAUTHORIZED")

    verifier: SessionVerifier = request.app.state.services.session_verifier
    return await verifier.verify(token)


VerifiedSession = Annotated[SessionClaims, Depends(verify_session)]
