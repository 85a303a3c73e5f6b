"""Testing utilities for the authentication core tests."""
from __future__ import annotations

import time

from sqlalchemy.ext.asyncio import AsyncSession

from backend.authcore.app.security import Argon2PasswordHasher
from backend.authcore.app.totp import TotpEngine
from backend.authcore.db.models import Account

_hasher = Argon2PasswordHasher()


async def create_account(
    session: AsyncSession,
    *,
    email: str = "player@example.com",
    password: str = "correct horse battery staple",
    display_name: str | None = "Player One",
) -> Account:
    """Persist an account with an Argon2 password hash."""

    account = Account(
        email=email.strip().lower(),
        password_hash=_hasher.hash(password),
        display_name=display_name,
    )
    session.add(account)
    await session.commit()
    await session.refresh(account)
    return account


def current_code(secret: str) -> str:
    return TotpEngine().generate_for_time(secret, time.time())


def wrong_code(secret: str) -> str:
    """A six digit code outside the verification window around now."""

    engine = TotpEngine()
    now = time.time()
    accepted = {engine.generate_for_time(secret, now + drift) for drift in (-60, -30, 0, 30, 60)}
    return next(code for code in ("000000", "111111", "222222", "333333") if code not in accepted)
