"""Tests for the authenticated user dependency and the /users/me endpoint."""

from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from home_inventory.core.config import Settings
from home_inventory.core.security.clerk_session import SessionClaims, verify_session
from home_inventory.core.services import AppServices
from home_inventory.main import create_application
from home_inventory.modules.auth.clerk_client import ClerkAPIError
from home_inventory.modules.auth.service import UserSyncService
from home_inventory.modules.auth.upsert import IdentityUpsertEngine
from tests.fakes import (
    FakeSessionFactory,
    MemoryIdempotencyStore,
    RecordingReporter,
    StubIdP,
    UserTable,
    make_api_user,
)

ME = "/api/v1/users/me"
AUTH = {"Authorization": "Bearer test-token"}


def _claims(**raw: Any) -> SessionClaims:
    claims = {"sub": "user_123", **raw}
    return SessionClaims(sub="user_123", email=raw.get("email"), raw_claims=claims)


def _app(
    session_factory: FakeSessionFactory,
    reporter: RecordingReporter,
    idp: StubIdP,
    claims: SessionClaims | None = None,
    user_sync: Any = None,
) -> FastAPI:
    engine = IdentityUpsertEngine(session_factory, reporter)  # type: ignore[arg-type]
    services = AppServices(
        settings=Settings(),
        session_factory=session_factory,  # type: ignore[arg-type]
        reporter=reporter,
        user_sync=user_sync or UserSyncService(engine, idp, reporter),
        session_verifier=MagicMock(),
        idempotency=MemoryIdempotencyStore(),
    )
    app = create_application(services)

    async def override_verify_session() -> SessionClaims:
        return claims or _claims()

    app.dependency_overrides[verify_session] = override_verify_session
    return app


@pytest_asyncio.fixture
async def client(
    session_factory: FakeSessionFactory, reporter: RecordingReporter
) -> AsyncGenerator[AsyncClient, None]:
    app = _app(session_factory, reporter, StubIdP(make_api_user()))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.mark.asyncio
async def test_me_returns_profile(client: AsyncClient, user_table: UserTable) -> None:
    row = user_table.add(
        external_id="user_123",
        email="jane@example.com",
        display_name="Jane Doe",
        avatar_url="https://img.example.com/j.png",
    )

    response = await client.get(ME, headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == str(row.id)
    assert body["external_id"] == "user_123"
    assert body["display_name"] == "Jane Doe"
    assert body["email_verified"] is True
    assert body["last_login_at"] is None


@pytest.mark.asyncio
async def test_inactive_user_forbidden(client: AsyncClient, user_table: UserTable) -> None:
    user_table.add(external_id="user_123", email="jane@example.com", is_active=False)

    response = await client.get(ME, headers=AUTH)

    assert response.status_code == 403
    assert response.json()["code"] == "AUTH_USER_INACTIVE"


@pytest.mark.asyncio
async def test_identity_conflict(client: AsyncClient, user_table: UserTable) -> None:
    user_table.add(external_id="user_other", email="jane@example.com")

    response = await client.get(ME, headers=AUTH)

    assert response.status_code == 409
    assert response.json() == {
        "code": "AUTH_IDENTITY_CONFLICT",
        "message": "Email already linked to another Clerk user",
    }


@pytest.mark.asyncio
async def test_clerk_user_gone(
    session_factory: FakeSessionFactory, reporter: RecordingReporter
) -> None:
    app = _app(session_factory, reporter, StubIdP(error=ClerkAPIError("gone", status_code=404)))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        response = await c.get(ME, headers=AUTH)

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_CLERK_USER_NOT_ACCESSIBLE"


@pytest.mark.asyncio
async def test_missing_email_everywhere(
    session_factory: FakeSessionFactory, reporter: RecordingReporter
) -> None:
    app = _app(session_factory, reporter, StubIdP(error=ClerkAPIError("timeout")))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        response = await c.get(ME, headers=AUTH)

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_EMAIL_MISSING"


@pytest.mark.asyncio
async def test_unclassified_failure_is_internal_error(
    session_factory: FakeSessionFactory, reporter: RecordingReporter
) -> None:
    user_sync = MagicMock()
    user_sync.ensure_user_for_request = AsyncMock(side_effect=RuntimeError("boom"))
    app = _app(session_factory, reporter, StubIdP(), user_sync=user_sync)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        response = await c.get(ME, headers=AUTH)

    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"


@pytest.mark.asyncio
async def test_row_vanished_is_not_found(
    session_factory: FakeSessionFactory, reporter: RecordingReporter
) -> None:
    user_sync = MagicMock()
    result = MagicMock(id="00000000-0000-0000-0000-000000000000", external_id="user_123")
    result.email = "jane@example.com"
    user_sync.ensure_user_for_request = AsyncMock(return_value=result)
    app = _app(session_factory, reporter, StubIdP(), user_sync=user_sync)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        response = await c.get(ME, headers=AUTH)

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "USER_NOT_FOUND"


@pytest.mark.asyncio
async def test_missing_token_unauthorized(
    session_factory: FakeSessionFactory, reporter: RecordingReporter
) -> None:
    app = _app(session_factory, reporter, StubIdP())
    app.dependency_overrides.clear()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        response = await c.get(ME)

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_session_cookie_is_accepted(
    session_factory: FakeSessionFactory, reporter: RecordingReporter, user_table: UserTable
) -> None:
    user_table.add(external_id="user_123", email="jane@example.com")
    app = _app(session_factory, reporter, StubIdP())
    app.dependency_overrides.clear()
    verifier = MagicMock()
    verifier.verify = AsyncMock(return_value=_claims())
    app.state.services.session_verifier = verifier

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={"__session": "cookie-token"},
    ) as c:
        response = await c.get(ME)

    assert response.status_code == 200
    verifier.verify.assert_awaited_once_with("cookie-token")


@pytest.mark.asyncio
async def test_health_reports_degraded_without_redis(client: AsyncClient) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["checks"] == {"db": "ok", "redis": "unavailable"}
    assert body["status"] == "degraded"


@pytest.mark.asyncio
async def test_patch_updates_profile(client: AsyncClient, user_table: UserTable) -> None:
    row = user_table.add(
        external_id="user_123", email="jane@example.com", avatar_url="https://img.example.com/old.png"
    )

    response = await client.patch(
        ME, headers=AUTH, json={"display_name": "  Jane   Q  Doe ", "avatar_url": ""}
    )

    assert response.status_code == 200
    assert response.json()["display_name"] == "Jane Q Doe"
    assert row.display_name == "Jane Q Doe"
    assert row.avatar_url is None


@pytest.mark.asyncio
async def test_patch_only_avatar(client: AsyncClient, user_table: UserTable) -> None:
    row = user_table.add(external_id="user_123", email="jane@example.com", display_name="Jane")

    response = await client.patch(
        ME, headers=AUTH, json={"avatar_url": "https://img.example.com/new.png"}
    )

    assert response.status_code == 200
    assert row.display_name == "Jane"
    assert row.avatar_url == "https://img.example.com/new.png"


@pytest.mark.parametrize(
    "body",
    [{}, {"display_name": "   "}, {"role": "admin"}, {"avatar_url": "not a url"}],
)
@pytest.mark.asyncio
async def test_patch_rejects_invalid_body(
    client: AsyncClient, user_table: UserTable, body: dict[str, Any]
) -> None:
    user_table.add(external_id="user_123", email="jane@example.com")

    response = await client.patch(ME, headers=AUTH, json=body)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_auth_me_provisions_user(client: AsyncClient, user_table: UserTable) -> None:
    response = await client.get("/api/v1/auth/me", headers=AUTH)

    assert response.status_code == 200
    [row] = user_table.rows
    assert response.json() == {
        "user": {"id": str(row.id), "external_id": "user_123", "email": "jane@example.com"}
    }
