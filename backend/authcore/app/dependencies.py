"""Process-wide wiring of the shared authentication components."""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from .challenges import LoginChallengeStore
from .config import Settings, settings
from .crypto import MfaSecretCipher
from .errors import ConfigurationError
from .login import LoginService
from .rate_limiter import RateLimiter
from .security import Argon2PasswordHasher, HmacTokenSigner, PasswordHasher, TokenSigner
from .totp import TotpEngine

_rate_limiter: RateLimiter | None = None
_challenge_store: LoginChallengeStore | None = None
_cipher: MfaSecretCipher | None = None
_signer: TokenSigner | None = None
_hasher: PasswordHasher | None = None
_totp = TotpEngine()


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def get_challenge_store(config: Settings = settings) -> LoginChallengeStore:
    global _challenge_store
    if _challenge_store is None:
        _challenge_store = LoginChallengeStore(ttl_seconds=config.auth.challenge_ttl_seconds)
    return _challenge_store


def get_mfa_cipher(config: Settings = settings) -> MfaSecretCipher:
    """Return the cipher for TOTP secrets; raises :class:`ConfigurationError` when misconfigured."""

    global _cipher
    if _cipher is None:
        _cipher = MfaSecretCipher.from_settings(config)
    return _cipher


def set_token_signer(signer: TokenSigner) -> None:
    """Install the signer used for access tokens (RS256 deployments load their key here)."""

    global _signer
    _signer = signer


def get_token_signer(config: Settings = settings) -> TokenSigner:
    global _signer
    if _signer is None:
        if config.is_production:
            raise ConfigurationError("An RS256 token signer must be installed in production")
        _signer = HmacTokenSigner(config.auth.jwt_secret)
    return _signer


def get_password_hasher() -> PasswordHasher:
    global _hasher
    if _hasher is None:
        _hasher = Argon2PasswordHasher()
    return _hasher


def build_login_service(session: AsyncSession, config: Settings = settings) -> LoginService:
    """Compose a :class:`LoginService` for one unit of work."""

    return LoginService(
        session,
        settings=config,
        signer=get_token_signer(config),
        cipher=get_mfa_cipher(config),
        rate_limiter=get_rate_limiter(),
        challenges=get_challenge_store(config),
        hasher=get_password_hasher(),
        totp=_totp,
    )


def reset_components() -> None:
    """Forget every cached component (tests and reconfiguration)."""

    global _rate_limiter, _challenge_store, _cipher, _signer, _hasher
    _rate_limiter = None
    _challenge_store = None
    _cipher = None
    _signer = None
    _hasher = None


__all__ = [
    "build_login_service",
    "get_challenge_store",
    "get_mfa_cipher",
    "get_password_hasher",
    "get_rate_limiter",
    "get_token_signer",
    "reset_components",
    "set_token_signer",
]
