"""Issue, rotate and revoke access/refresh token pairs."""
from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from .config import AuthSettings
from .errors import ExpiredRefreshToken, InvalidRefreshToken
from .logging import get_logger
from .security import TokenSigner, hash_token
from .stores import AccountMfaStore, RefreshTokenStore, ensure_aware

logger = get_logger("authcore.tokens")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in_seconds: int
    refresh_expires_at: datetime
    token_type: str = "Bearer"


class TokenService:
    """Sign access tokens and persist rotating refresh tokens for one session.

    Refresh tokens are stored as SHA-256 digests only. Rotation revokes the
    presented token with a conditional update, so of two concurrent refreshes
    with the same token exactly one receives a new pair. Tokens issued by a
    rotation share the ``family_id`` of the login that started the chain.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        signer: TokenSigner,
        settings: AuthSettings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session = session
        self._refresh_tokens = RefreshTokenStore(session)
        self._mfa = AccountMfaStore(session)
        self._signer = signer
        self._settings = settings
        self._clock = clock

    async def _mfa_enabled(self, account_id: str) -> bool:
        record = await self._mfa.get(account_id)
        return bool(record is not None and record.enabled)

    def _sign_access_token(self, account_id: str, *, mfa: bool, issued_at: datetime) -> str:
        iat = int(issued_at.timestamp())
        claims = {
            "iss": self._settings.issuer,
            "sub": account_id,
            "aud": self._settings.audience,
            "iat": iat,
            "exp": iat + self._settings.access_token_ttl_seconds,
            "mfa": mfa,
            "jti": str(uuid.uuid4()),
        }
        return self._signer.sign(claims)

    async def issue_tokens(
        self,
        account_id: str,
        *,
        family_id: str | None = None,
        parent_id: int | None = None,
    ) -> TokenPair:
        issued_at = self._clock()
        access_token = self._sign_access_token(
            account_id, mfa=await self._mfa_enabled(account_id), issued_at=issued_at
        )
        refresh_token = secrets.token_urlsafe(32)
        refresh_expires_at = issued_at + timedelta(seconds=self._settings.refresh_token_ttl_seconds)
        await self._refresh_tokens.add(
            account_id=account_id,
            token_hash=hash_token(refresh_token),
            expires_at=refresh_expires_at,
            family_id=family_id,
            parent_id=parent_id,
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in_seconds=self._settings.access_token_ttl_seconds,
            refresh_expires_at=refresh_expires_at,
        )

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate ``refresh_token`` into a new pair."""

        record = await self._refresh_tokens.find_by_hash(hash_token(refresh_token))
        if record is None:
            raise InvalidRefreshToken()
        if record.revoked:
            if self._settings.revoke_family_on_reuse:
                revoked = await self._refresh_tokens.revoke_family(record.family_id)
                # Must survive the rollback the caller performs on the raised error.
                await self._session.commit()
                logger.warning(
                    "refresh_token_reuse_detected",
                    account_id=record.account_id,
                    family_id=record.family_id,
                    revoked=revoked,
                )
            else:
                logger.warning("refresh_token_reuse_detected", account_id=record.account_id)
            raise InvalidRefreshToken()
        if ensure_aware(record.expires_at) <= self._clock():
            raise ExpiredRefreshToken()
        if not await self._refresh_tokens.mark_revoked(record.id):
            raise InvalidRefreshToken()
        return await self.issue_tokens(
            record.account_id, family_id=record.family_id, parent_id=record.id
        )

    async def revoke(self, refresh_token: str) -> None:
        """Revoke ``refresh_token``; unknown or already revoked tokens are ignored."""

        record = await self._refresh_tokens.find_active_by_hash(hash_token(refresh_token))
        if record is not None:
            await self._refresh_tokens.mark_revoked(record.id)

    async def revoke_all(self, account_id: str) -> int:
        count = await self._refresh_tokens.revoke_for_account(account_id)
        if count:
            logger.info("refresh_tokens_revoked", account_id=account_id, count=count)
        return count


__all__ = ["TokenPair", "TokenService"]
