"""Short-lived tickets bridging the password step and the second factor step."""
from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable

DEFAULT_TTL_SECONDS = 300


@dataclass(frozen=True, slots=True)
class AccountRef:
    """The parts of an account a pending login needs to finish."""

    id: str
    email: str
    display_name: str | None = None


@dataclass(frozen=True, slots=True)
class LoginChallenge:
    account: AccountRef
    allowed_factors: tuple[str, ...]
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class LoginChallengeStore:
    """In-process, thread-safe store of single-use login challenges."""

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be at least 1")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._challenges: dict[str, LoginChallenge] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def create(self, account: AccountRef, allowed_factors: Iterable[str]) -> str:
        ticket = secrets.token_urlsafe(32)
        challenge = LoginChallenge(
            account=account,
            allowed_factors=tuple(allowed_factors),
            expires_at=self._clock() + self._ttl_seconds,
        )
        with self._lock:
            self._challenges[ticket] = challenge
        return ticket

    def peek(self, ticket: str) -> LoginChallenge | None:
        with self._lock:
            challenge = self._challenges.get(ticket)
            if challenge is None:
                return None
            if challenge.is_expired(self._clock()):
                del self._challenges[ticket]
                return None
            return challenge

    def consume(self, ticket: str) -> LoginChallenge | None:
        """Remove and return the challenge; at most one caller ever receives it."""

        with self._lock:
            challenge = self._challenges.pop(ticket, None)
        if challenge is None or challenge.is_expired(self._clock()):
            return None
        return challenge

    def clear_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [ticket for ticket, c in self._challenges.items() if c.is_expired(now)]
            for ticket in expired:
                del self._challenges[ticket]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)


__all__ = ["AccountRef", "DEFAULT_TTL_SECONDS", "LoginChallenge", "LoginChallengeStore"]
