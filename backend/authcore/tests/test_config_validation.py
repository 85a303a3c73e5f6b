"""Validation tests for authentication core configuration models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from backend.authcore.app.config import (
    AuthSettings,
    CryptoSettings,
    RateLimitSettings,
    Settings,
)


def test_auth_settings_defaults_within_bounds() -> None:
    settings = AuthSettings()

    assert settings.audience == "fortalis-game"
    assert settings.access_token_ttl_seconds == 900
    assert settings.refresh_token_ttl_seconds == 2_592_000
    assert settings.challenge_ttl_seconds == 300
    assert settings.revoke_family_on_reuse is True


def test_rate_limit_defaults() -> None:
    limits = RateLimitSettings()

    assert (limits.ip_attempts, limits.ip_window_seconds) == (20, 60)
    assert (limits.principal_attempts, limits.principal_window_seconds) == (5, 900)
    assert (limits.challenge_attempts, limits.challenge_window_seconds) == (5, 300)


@pytest.mark.parametrize("value", [59, 3_601])
def test_access_token_ttl_out_of_bounds(value: int) -> None:
    with pytest.raises(ValidationError):
        AuthSettings(access_token_ttl_seconds=value)


@pytest.mark.parametrize("value", [3_599, 7_776_001])
def test_refresh_token_ttl_out_of_bounds(value: int) -> None:
    with pytest.raises(ValidationError):
        AuthSettings(refresh_token_ttl_seconds=value)


@pytest.mark.parametrize("value", [59, 901])
def test_mfa_challenge_ttl_out_of_bounds(value: int) -> None:
    with pytest.raises(ValidationError):
        AuthSettings.model_validate({"AUTH_MFA_CHALLENGE_TTL_SECONDS": value})


@pytest.mark.parametrize("field", ["issuer", "audience", "totp_issuer"])
def test_blank_text_settings_are_rejected(field: str) -> None:
    with pytest.raises(ValidationError):
        AuthSettings(**{field: "   "})


def test_short_jwt_secret_is_rejected() -> None:
    with pytest.raises(ValidationError):
        AuthSettings(jwt_secret="too-short")


def test_window_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        RateLimitSettings(ip_window_seconds=0)


def test_key_id_rejects_envelope_separator() -> None:
    with pytest.raises(ValidationError):
        CryptoSettings(mfa_key_id="v1:bad")


def test_blank_encryption_key_means_passthrough() -> None:
    assert CryptoSettings(mfa_encryption_key="  ").mfa_encryption_key is None


def test_settings_reads_nested_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", " Production ")
    monkeypatch.setenv("AUTH__AUDIENCE", "fortalis-staging")
    monkeypatch.setenv("RATE_LIMIT__PRINCIPAL_ATTEMPTS", "3")

    settings = Settings()

    assert settings.env == "production"
    assert settings.is_production
    assert settings.auth.audience == "fortalis-staging"
    assert settings.rate_limit.principal_attempts == 3
