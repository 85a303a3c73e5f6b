"""Persistence collaborators for accounts, refresh tokens and MFA records.

Each store wraps the caller's :class:`AsyncSession`; stores only ``flush`` so
the surrounding transaction stays under the caller's control. Conditional
updates report whether they changed a row, which is how the services decide
races (rotation, backup code redemption) without holding locks.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import Account, AccountMfa, MfaBackupCode, MfaType, RefreshToken


def _now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive timestamps read back from the database as UTC."""

    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def normalise_email(email: str) -> str:
    return email.strip().lower()


class AccountStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, account_id: str) -> Account | None:
        return await self._session.get(Account, account_id)

    async def get_by_email(self, email: str) -> Account | None:
        stmt = select(Account).where(Account.email == normalise_email(email))
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def add(self, *, email: str, password_hash: str, display_name: str | None) -> Account:
        account = Account(
            email=normalise_email(email),
            password_hash=password_hash,
            display_name=display_name,
        )
        self._session.add(account)
        await self._session.flush()
        return account


class RefreshTokenStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        account_id: str,
        token_hash: str,
        expires_at: datetime,
        family_id: str | None = None,
        parent_id: int | None = None,
    ) -> RefreshToken:
        record = RefreshToken(
            account_id=account_id,
            token_hash=token_hash,
            expires_at=expires_at,
            family_id=family_id or str(uuid.uuid4()),
            parent_id=parent_id,
            issued_at=_now(),
            revoked=False,
        )
        self._session.add(record)
        await self._session.flush()
        return record

    async def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        stmt = select(RefreshToken).where(RefreshToken.token_hash == token_hash)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def find_active_by_hash(self, token_hash: str) -> RefreshToken | None:
        stmt = select(RefreshToken).where(
            RefreshToken.token_hash == token_hash,
            RefreshToken.revoked.is_(False),
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def mark_revoked(self, record_id: int) -> bool:
        """Revoke ``record_id`` if it is still active; ``True`` when this call won."""

        result = await self._session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record_id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True, revoked_at=_now())
            .execution_options(synchronize_session="evaluate")
        )
        return (result.rowcount or 0) == 1

    async def revoke_family(self, family_id: str) -> int:
        result = await self._session.execute(
            update(RefreshToken)
            .where(RefreshToken.family_id == family_id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True, revoked_at=_now())
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount or 0

    async def revoke_for_account(self, account_id: str) -> int:
        result = await self._session.execute(
            update(RefreshToken)
            .where(RefreshToken.account_id == account_id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True, revoked_at=_now())
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount or 0


class AccountMfaStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, account_id: str) -> AccountMfa | None:
        return await self._session.get(AccountMfa, account_id)

    async def save_secret(self, account_id: str, secret: str) -> AccountMfa:
        """Create or overwrite the TOTP enrolment, always leaving it disabled."""

        record = await self.get(account_id)
        if record is None:
            record = AccountMfa(account_id=account_id)
            self._session.add(record)
        record.type = MfaType.TOTP
        record.secret = secret
        record.enabled = False
        await self._session.flush()
        return record

    async def set_enabled(self, record: AccountMfa, enabled: bool) -> None:
        record.enabled = enabled
        await self._session.flush()


class BackupCodeStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def delete_for_account(self, account_id: str) -> None:
        await self._session.execute(
            delete(MfaBackupCode).where(MfaBackupCode.account_id == account_id)
        )

    async def add_many(self, account_id: str, code_hashes: Iterable[str]) -> None:
        created_at = _now()
        for code_hash in code_hashes:
            self._session.add(
                MfaBackupCode(
                    account_id=account_id,
                    code_hash=code_hash,
                    used=False,
                    created_at=created_at,
                )
            )
        await self._session.flush()

    async def list_unused(self, account_id: str) -> Sequence[MfaBackupCode]:
        stmt = select(MfaBackupCode).where(
            MfaBackupCode.account_id == account_id,
            MfaBackupCode.used.is_(False),
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def mark_used(self, code_id: int) -> bool:
        """Flip ``code_id`` to used if nobody else did; ``True`` when this call won."""

        result = await self._session.execute(
            update(MfaBackupCode)
            .where(MfaBackupCode.id == code_id, MfaBackupCode.used == False)  # noqa: E712
            .values(used=True, used_at=_now())
            .execution_options(synchronize_session="evaluate")
        )
        return (result.rowcount or 0) == 1


__all__ = [
    "AccountMfaStore",
    "AccountStore",
    "BackupCodeStore",
    "RefreshTokenStore",
    "ensure_aware",
    "normalise_email",
]
