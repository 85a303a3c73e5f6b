"""Password login, the MFA challenge step and session refresh.

``LoginService`` is the composition root of one request: it owns the
``AsyncSession`` handed in by the caller and borrows the process-wide rate
limiter, challenge store and signing capabilities.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import Account
from .challenges import AccountRef, LoginChallengeStore
from .config import Settings
from .crypto import MfaSecretCipher
from .errors import (
    EmailAlreadyRegistered,
    InvalidCredentials,
    InvalidMfaCode,
    MfaChallengeInvalidOrExpired,
    MfaFactorNotAllowed,
    MfaRequired,
)
from .logging import get_logger
from .mfa_service import MfaService
from .rate_limiter import RateLimiter
from .security import PasswordHasher, TokenSigner
from .stores import AccountStore, normalise_email
from .token_service import TokenPair, TokenService
from .totp import TotpEngine

FACTOR_TOTP: Final[str] = "TOTP"
FACTOR_BACKUP_CODE: Final[str] = "BACKUP_CODE"
ALLOWED_FACTORS: Final[tuple[str, ...]] = (FACTOR_TOTP, FACTOR_BACKUP_CODE)

logger = get_logger("authcore.login")


@dataclass(frozen=True, slots=True)
class TokensIssued:
    pair: TokenPair
    account_id: str
    display_name: str | None
    mfa_enabled: bool


@dataclass(frozen=True, slots=True)
class ChallengeRequired:
    ticket: str
    allowed_factors: tuple[str, ...]
    expires_in_seconds: int


LoginOutcome = Union[TokensIssued, ChallengeRequired]


def _normalise_ip(client_ip: str | None) -> str:
    if not client_ip:
        return "unknown"
    return client_ip.strip() or "unknown"


class LoginService:
    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: Settings,
        signer: TokenSigner,
        cipher: MfaSecretCipher,
        rate_limiter: RateLimiter,
        challenges: LoginChallengeStore,
        hasher: PasswordHasher,
        totp: TotpEngine | None = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._accounts = AccountStore(session)
        self._rate_limiter = rate_limiter
        self._challenges = challenges
        self._hasher = hasher
        self.mfa = MfaService(
            session,
            cipher=cipher,
            totp=totp,
            issuer=settings.auth.totp_issuer,
        )
        self.tokens = TokenService(session, signer=signer, settings=settings.auth)

    # Rate limit keys

    def _consume_ip_budget(self, client_ip: str | None) -> None:
        limits = self._settings.rate_limit
        self._rate_limiter.check_and_consume(
            f"ip:{_normalise_ip(client_ip)}", limits.ip_attempts, limits.ip_window_seconds
        )

    def _consume_principal_budget(self, email: str) -> None:
        limits = self._settings.rate_limit
        self._rate_limiter.check_and_consume(
            f"login:{email}", limits.principal_attempts, limits.principal_window_seconds
        )

    async def _issue(self, account_id: str, display_name: str | None) -> TokensIssued:
        pair = await self.tokens.issue_tokens(account_id)
        return TokensIssued(
            pair=pair,
            account_id=account_id,
            display_name=display_name,
            mfa_enabled=await self.mfa.is_enabled(account_id),
        )

    async def _authenticate(self, email: str, password: str, client_ip: str | None) -> Account:
        self._consume_ip_budget(client_ip)
        self._consume_principal_budget(email)
        account = await self._accounts.get_by_email(email)
        if account is None or not self._hasher.matches(password, account.password_hash):
            logger.info("login_failed", reason="invalid_credentials")
            raise InvalidCredentials()
        return account

    async def register(
        self, email: str, password: str, display_name: str | None = None
    ) -> TokensIssued:
        email = normalise_email(email)
        if await self._accounts.get_by_email(email) is not None:
            raise EmailAlreadyRegistered()
        try:
            account = await self._accounts.add(
                email=email,
                password_hash=self._hasher.hash(password),
                display_name=display_name,
            )
        except IntegrityError as exc:
            await self._session.rollback()
            raise EmailAlreadyRegistered() from exc
        logger.info("account_registered", account_id=account.id)
        return await self._issue(account.id, account.display_name)

    async def start_login(
        self, email: str, password: str, client_ip: str | None = None
    ) -> LoginOutcome:
        """Check the password; returns tokens or, with MFA enabled, a challenge ticket."""

        email = normalise_email(email)
        account = await self._authenticate(email, password, client_ip)
        if await self.mfa.is_enabled(account.id):
            ref = AccountRef(id=account.id, email=account.email, display_name=account.display_name)
            ticket = self._challenges.create(ref, ALLOWED_FACTORS)
            logger.info("login_challenge_issued", account_id=account.id)
            return ChallengeRequired(
                ticket=ticket,
                allowed_factors=ALLOWED_FACTORS,
                expires_in_seconds=self._challenges.ttl_seconds,
            )
        self._rate_limiter.clear(f"login:{email}")
        logger.info("login_succeeded", account_id=account.id, mfa=False)
        return await self._issue(account.id, account.display_name)

    async def _verify_factor(self, factor: str, account_id: str, code: str | None) -> bool:
        if factor == FACTOR_TOTP:
            return await self.mfa.verify_totp(account_id, code)
        if factor == FACTOR_BACKUP_CODE:
            return await self.mfa.redeem_backup_code(account_id, code)
        raise MfaFactorNotAllowed()

    async def complete_login(
        self, ticket: str, factor: str, code: str | None, client_ip: str | None = None
    ) -> TokensIssued:
        """Finish a challenged login; ``factor`` selects which verifier checks ``code``.

        A wrong code leaves the ticket usable until it expires or its attempt
        budget runs out.
        """

        limits = self._settings.rate_limit
        self._consume_ip_budget(client_ip)
        self._rate_limiter.check_and_consume(
            f"challenge:{ticket}", limits.challenge_attempts, limits.challenge_window_seconds
        )
        challenge = self._challenges.peek(ticket)
        if challenge is None:
            raise MfaChallengeInvalidOrExpired()
        normalised_factor = (factor or "").strip().upper()
        if normalised_factor not in challenge.allowed_factors:
            raise MfaFactorNotAllowed()
        account = challenge.account
        if not await self._verify_factor(normalised_factor, account.id, code):
            logger.info("mfa_verification_failed", account_id=account.id, factor=normalised_factor)
            raise InvalidMfaCode()
        if self._challenges.consume(ticket) is None:
            raise MfaChallengeInvalidOrExpired()
        self._rate_limiter.clear(f"login:{account.email}")
        self._rate_limiter.clear(f"challenge:{ticket}")
        logger.info("login_succeeded", account_id=account.id, mfa=True)
        return await self._issue(account.id, account.display_name)

    async def login(
        self,
        email: str,
        password: str,
        client_ip: str | None = None,
        mfa_code: str | None = None,
    ) -> TokensIssued:
        """Single request login for clients that collect the code up front."""

        email = normalise_email(email)
        account = await self._authenticate(email, password, client_ip)
        if await self.mfa.is_enabled(account.id):
            if mfa_code is None or not mfa_code.strip():
                raise MfaRequired()
            if not await self.mfa.verify(account.id, mfa_code):
                raise InvalidMfaCode()
        self._rate_limiter.clear(f"login:{email}")
        logger.info("login_succeeded", account_id=account.id)
        return await self._issue(account.id, account.display_name)

    async def disable_mfa(self, account_id: str, code: str | None) -> int:
        """Turn TOTP off and sign the account out everywhere; returns revoked session count."""

        await self.mfa.disable_totp(account_id, code)
        return await self.tokens.revoke_all(account_id)

    async def refresh(self, refresh_token: str) -> TokenPair:
        return await self.tokens.refresh(refresh_token)

    async def logout(self, refresh_token: str) -> None:
        await self.tokens.revoke(refresh_token)


__all__ = [
    "ALLOWED_FACTORS",
    "ChallengeRequired",
    "FACTOR_BACKUP_CODE",
    "FACTOR_TOTP",
    "LoginOutcome",
    "LoginService",
    "TokensIssued",
]
