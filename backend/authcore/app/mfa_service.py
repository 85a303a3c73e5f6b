"""TOTP enrolment lifecycle and second factor verification."""
from __future__ import annotations

import enum
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from .backup_codes import BackupCodeVault
from .crypto import MfaSecretCipher
from .errors import InvalidMfaCode, MfaNotSetUp
from .logging import get_logger
from .stores import AccountMfaStore
from .totp import TotpEngine

logger = get_logger("authcore.mfa")


class MfaState(str, enum.Enum):
    NO_MFA = "none"
    PENDING_ENABLE = "pending"
    ENABLED = "enabled"


@dataclass(frozen=True, slots=True)
class TotpSetup:
    """Material shown to the user exactly once during enrolment."""

    secret: str
    backup_codes: tuple[str, ...]
    otpauth_url: str


class MfaService:
    """Drive the ``NoMfa -> PendingEnable -> Enabled`` state machine of one account."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        cipher: MfaSecretCipher,
        totp: TotpEngine | None = None,
        issuer: str = "Fortalis",
    ) -> None:
        self._records = AccountMfaStore(session)
        self._vault = BackupCodeVault(session)
        self._cipher = cipher
        self._totp = totp or TotpEngine()
        self._issuer = issuer

    async def setup_totp(self, account_id: str, *, label: str | None = None) -> TotpSetup:
        """Start (or restart) enrolment; any previous secret and backup codes are replaced."""

        secret = self._totp.generate_secret()
        await self._records.save_secret(account_id, self._cipher.encrypt(secret))
        codes = await self._vault.regenerate(account_id)
        logger.info("mfa_setup_started", account_id=account_id)
        return TotpSetup(
            secret=secret,
            backup_codes=tuple(codes),
            otpauth_url=self._totp.otpauth_url(self._issuer, label or account_id, secret),
        )

    async def enable_totp(self, account_id: str, code: str | None) -> None:
        record = await self._records.get(account_id)
        if record is None:
            raise MfaNotSetUp()
        if not self._totp.verify(self._cipher.decrypt(record.secret), _strip(code)):
            raise InvalidMfaCode()
        await self._records.set_enabled(record, True)
        logger.info("mfa_enabled", account_id=account_id)

    async def disable_totp(self, account_id: str, code: str | None) -> None:
        record = await self._records.get(account_id)
        if record is None:
            raise MfaNotSetUp()
        if not self._totp.verify(self._cipher.decrypt(record.secret), _strip(code)):
            raise InvalidMfaCode()
        await self._records.set_enabled(record, False)
        logger.info("mfa_disabled", account_id=account_id)

    async def verify_totp(self, account_id: str, code: str | None) -> bool:
        """Check only the authenticator code; backup codes are never accepted here."""

        cleaned = _strip(code)
        if not cleaned:
            return False
        record = await self._records.get(account_id)
        if record is None or not record.enabled:
            return False
        return self._totp.verify(self._cipher.decrypt(record.secret), cleaned)

    async def redeem_backup_code(self, account_id: str, code: str | None) -> bool:
        """Consume a backup code of an account with MFA enabled."""

        cleaned = _strip(code)
        if not cleaned or not await self.is_enabled(account_id):
            return False
        return await self._vault.redeem(account_id, cleaned)

    async def verify(self, account_id: str, code: str | None) -> bool:
        """Accept either factor: a six digit TOTP first, then a backup code."""

        cleaned = _strip(code)
        if not cleaned:
            return False
        if len(cleaned) == 6 and await self.verify_totp(account_id, cleaned):
            return True
        return await self.redeem_backup_code(account_id, cleaned)

    async def is_enabled(self, account_id: str) -> bool:
        record = await self._records.get(account_id)
        return bool(record is not None and record.enabled)

    async def status(self, account_id: str) -> MfaState:
        record = await self._records.get(account_id)
        if record is None:
            return MfaState.NO_MFA
        return MfaState.ENABLED if record.enabled else MfaState.PENDING_ENABLE


def _strip(code: str | None) -> str | None:
    return code.strip() if code is not None else None


__all__ = ["MfaService", "MfaState", "TotpSetup"]
