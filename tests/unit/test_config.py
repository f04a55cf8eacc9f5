"""Unit tests for Settings parsing and production safety checks."""

import pytest
from pydantic import ValidationError

from home_inventory.core.config import Settings, get_settings


def test_defaults() -> None:
    settings = Settings()

    assert settings.environment == "development"
    assert settings.user_sync_max_attempts == 3
    assert settings.webhook_idempotency_ttl_seconds == 86400
    assert settings.webhook_idempotency_prefix == "clerk-webhook:svix:"
    assert settings.clerk_authorized_parties_all == []


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("https://a.example.com, https://b.example.com", ["https://a.example.com", "https://b.example.com"]),
        ('["https://a.example.com", " "]', ["https://a.example.com"]),
        ("", []),
    ],
)
def test_authorized_parties_parsing(raw: str, expected: list[str]) -> None:
    assert Settings(clerk_authorized_parties=raw).clerk_authorized_parties_all == expected


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("USER_SYNC_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("CLERK_SECRET_KEY", "sk_test_env")

    settings = get_settings()

    assert settings.user_sync_max_attempts == 5
    assert settings.clerk_secret_key == "sk_test_env"


def test_production_requires_secrets() -> None:
    with pytest.raises(ValidationError, match="clerk_secret_key"):
        Settings(environment="production", cors_origins=["https://app.example.com"])


def test_production_rejects_default_cors() -> None:
    with pytest.raises(ValidationError, match="cors_origins"):
        Settings(
            environment="production",
            clerk_secret_key="sk_live",
            clerk_webhook_signing_secret="whsec_x",
        )


def test_production_valid() -> None:
    settings = Settings(
        environment="production",
        clerk_secret_key="sk_live",
        clerk_webhook_signing_secret="whsec_x",
        cors_origins=["https://app.example.com"],
    )
    assert settings.environment == "production"
