"""Single-use MFA recovery codes."""
from __future__ import annotations

import hmac
import re
import secrets
from typing import Final

from sqlalchemy.ext.asyncio import AsyncSession

from .logging import get_logger
from .security import hash_token
from .stores import BackupCodeStore

BACKUP_CODE_COUNT: Final[int] = 10

_DASHED = re.compile(r"[0-9]{4}-[0-9]{4}")
_UNDASHED = re.compile(r"[0-9]{8}")

logger = get_logger("authcore.backup_codes")


def _generate_code() -> str:
    return f"{secrets.randbelow(10_000):04d}-{secrets.randbelow(10_000):04d}"


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> list[str]:
    return [_generate_code() for _ in range(count)]


def hash_backup_code(code: str) -> str:
    return hash_token(code)


def normalise_backup_code(candidate: str | None) -> str | None:
    """Return ``candidate`` in ``DDDD-DDDD`` form, or ``None`` if it cannot be a backup code."""

    if candidate is None:
        return None
    cleaned = candidate.strip()
    if _UNDASHED.fullmatch(cleaned):
        cleaned = f"{cleaned[:4]}-{cleaned[4:]}"
    if not _DASHED.fullmatch(cleaned):
        return None
    return cleaned


class BackupCodeVault:
    """Generate, store (as digests) and redeem backup codes for one session."""

    def __init__(self, session: AsyncSession) -> None:
        self._codes = BackupCodeStore(session)

    async def regenerate(self, account_id: str) -> list[str]:
        """Replace every existing code of ``account_id`` with a fresh batch."""

        codes = generate_backup_codes()
        await self._codes.delete_for_account(account_id)
        await self._codes.add_many(account_id, (hash_backup_code(code) for code in codes))
        return codes

    async def redeem(self, account_id: str, candidate: str | None) -> bool:
        """Consume ``candidate`` if it matches an unused code; ``True`` on success."""

        normalised = normalise_backup_code(candidate)
        if normalised is None:
            return False
        digest = hash_backup_code(normalised)
        for record in await self._codes.list_unused(account_id):
            if hmac.compare_digest(record.code_hash, digest):
                if await self._codes.mark_used(record.id):
                    logger.info("backup_code_consumed", account_id=account_id)
                    return True
                return False
        return False


__all__ = [
    "BACKUP_CODE_COUNT",
    "BackupCodeVault",
    "generate_backup_codes",
    "hash_backup_code",
    "normalise_backup_code",
]
