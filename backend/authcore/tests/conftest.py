"""Common test fixtures for the authentication core tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from backend.authcore.app.challenges import LoginChallengeStore
from backend.authcore.app.config import AuthSettings, Settings
from backend.authcore.app.crypto import MfaSecretCipher
from backend.authcore.app.login import LoginService
from backend.authcore.app.rate_limiter import RateLimiter
from backend.authcore.app.security import Argon2PasswordHasher, HmacTokenSigner
from backend.authcore.app.token_service import TokenService
from backend.authcore.app.totp import TotpEngine
from backend.authcore.db.base import create_all, create_engine, create_session, dispose_engine

TEST_JWT_SECRET = "test-secret-test-secret-test-secret-0123"


class FakeClock:
    """Manually advanced epoch clock for the in-memory components."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Keep structlog's global configuration from leaking between tests."""

    yield
    structlog.reset_defaults()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    """Return a SQLite database URL located in a temporary directory."""

    return f"sqlite+aiosqlite:///{tmp_path / 'authcore.sqlite3'}"


@pytest_asyncio.fixture()
async def db_engine(db_url: str) -> AsyncIterator[AsyncEngine]:
    engine = create_engine(db_url, echo=False)
    await create_all()
    try:
        yield engine
    finally:
        await dispose_engine()


@pytest_asyncio.fixture()
async def db_session(db_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    session = create_session()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(env="test", auth=AuthSettings(jwt_secret=TEST_JWT_SECRET))


@pytest.fixture()
def signer() -> HmacTokenSigner:
    return HmacTokenSigner(TEST_JWT_SECRET)


@pytest.fixture()
def cipher() -> MfaSecretCipher:
    return MfaSecretCipher(b"\x01" * 32)


@pytest.fixture()
def totp() -> TotpEngine:
    return TotpEngine()


@pytest.fixture()
def token_service(
    db_session: AsyncSession, signer: HmacTokenSigner, test_settings: Settings
) -> TokenService:
    return TokenService(db_session, signer=signer, settings=test_settings.auth)


@pytest.fixture()
def login_service(
    db_session: AsyncSession,
    test_settings: Settings,
    signer: HmacTokenSigner,
    cipher: MfaSecretCipher,
    clock: FakeClock,
    totp: TotpEngine,
) -> LoginService:
    return LoginService(
        db_session,
        settings=test_settings,
        signer=signer,
        cipher=cipher,
        rate_limiter=RateLimiter(clock=clock),
        challenges=LoginChallengeStore(ttl_seconds=300, clock=clock),
        hasher=Argon2PasswordHasher(),
        totp=totp,
    )
