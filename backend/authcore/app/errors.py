"""Error taxonomy shared by the authentication core services.

Every error carries a stable machine-readable ``code`` that transport layers
can map onto their own status codes. Messages are safe to show to clients
and never include secret material.
"""
from __future__ import annotations

from typing import Any, ClassVar


class AuthError(Exception):
    """Base class for recoverable, per-request authentication failures."""

    code: ClassVar[str] = "auth_error"
    default_message: ClassVar[str] = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    default_message = "Bad credentials."


class EmailAlreadyRegistered(AuthError):
    code = "email_taken"
    default_message = "Email already registered."


class MfaRequired(AuthError):
    code = "mfa_required"
    default_message = "TOTP code required."


class InvalidMfaCode(AuthError):
    code = "mfa_invalid"
    default_message = "Invalid MFA code."


class MfaChallengeInvalidOrExpired(AuthError):
    code = "mfa_challenge_invalid"
    default_message = "Invalid or expired login ticket."


class MfaFactorNotAllowed(AuthError):
    code = "mfa_factor_not_allowed"
    default_message = "Factor not allowed for this login."


class MfaNotSetUp(AuthError):
    code = "totp_not_setup"
    default_message = "Call setup first."


class InvalidRefreshToken(AuthError):
    code = "invalid_refresh"
    default_message = "Invalid refresh token."


class ExpiredRefreshToken(AuthError):
    code = "expired_refresh"
    default_message = "Refresh token expired."


class RateLimited(AuthError):
    """Raised when a rate limit bucket has no attempts left in its window."""

    code = "rate_limited"
    default_message = "Too many attempts. Try later."

    def __init__(self, retry_after_seconds: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = int(retry_after_seconds)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["retryAfterSeconds"] = self.retry_after_seconds
        return payload


class InvalidEncryptionEnvelope(AuthError):
    code = "invalid_envelope"
    default_message = "Invalid envelope."


class DecryptFailure(AuthError):
    code = "decrypt_failed"
    default_message = "Decrypt failed."


class ConfigurationError(RuntimeError):
    """Raised while wiring components; fatal at startup."""

    code: ClassVar[str] = "configuration_error"


__all__ = [
    "AuthError",
    "ConfigurationError",
    "DecryptFailure",
    "EmailAlreadyRegistered",
    "ExpiredRefreshToken",
    "InvalidCredentials",
    "InvalidEncryptionEnvelope",
    "InvalidMfaCode",
    "InvalidRefreshToken",
    "MfaChallengeInvalidOrExpired",
    "MfaFactorNotAllowed",
    "MfaNotSetUp",
    "MfaRequired",
    "RateLimited",
]
