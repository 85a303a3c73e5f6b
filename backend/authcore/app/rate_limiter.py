"""Fixed-window rate limiting for authentication endpoints."""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from .errors import RateLimited
from .logging import get_logger

logger = get_logger("authcore.rate_limiter")


@dataclass(slots=True)
class _Bucket:
    """Attempt counter for one key; mutated only while ``lock`` is held."""

    count: int = 0
    window_reset_at: float = 0.0
    retired: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


class RateLimiter:
    """Per-key fixed-window limiter.

    Buckets are created lazily under a short registry lock and then mutated
    under their own lock, so calls for the same key are linearizable while
    different keys never wait on each other's counters.

    A bucket removed by :meth:`clear` or :meth:`prune` is marked retired while
    its lock is held; a caller that fetched it just before the removal retries
    against the registry instead of counting into an orphan. Keys that are
    never cleared explicitly, such as per-ticket challenge budgets, are swept
    by a :meth:`prune` run every ``prune_interval`` calls.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        namespace: str = "",
        prune_interval: int = 1024,
    ) -> None:
        if prune_interval < 1:
            raise ValueError("prune_interval must be at least 1")
        self._clock = clock
        self._namespace = namespace
        self._buckets: dict[str, _Bucket] = {}
        self._registry_lock = threading.Lock()
        self._prune_interval = prune_interval
        self._calls_since_prune = 0

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    def _bucket(self, key: str) -> _Bucket:
        with self._registry_lock:
            self._calls_since_prune += 1
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket()
                self._buckets[key] = bucket
            return bucket

    def check_and_consume(self, key: str, max_attempts: int, window_seconds: int) -> None:
        """Consume one attempt for ``key`` or raise :class:`RateLimited`."""

        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        if self._calls_since_prune >= self._prune_interval:
            self.prune()
        full_key = self._make_key(key)
        while True:
            bucket = self._bucket(full_key)
            with bucket.lock:
                if bucket.retired:
                    continue
                now = self._clock()
                if now >= bucket.window_reset_at:
                    bucket.count = 0
                    bucket.window_reset_at = now + window_seconds
                if bucket.count >= max_attempts:
                    retry_after = max(1, math.ceil(bucket.window_reset_at - now))
                    logger.info(
                        "rate_limited",
                        scope=key.partition(":")[0],
                        retry_after_seconds=retry_after,
                    )
                    raise RateLimited(retry_after)
                bucket.count += 1
                return

    def clear(self, key: str) -> None:
        with self._registry_lock:
            bucket = self._buckets.pop(self._make_key(key), None)
            if bucket is not None:
                _retire(bucket)

    def prune(self) -> int:
        """Drop buckets whose window has elapsed; returns how many were removed."""

        now = self._clock()
        with self._registry_lock:
            self._calls_since_prune = 0
            stale = [key for key, bucket in self._buckets.items() if now >= bucket.window_reset_at]
            for key in stale:
                _retire(self._buckets.pop(key))
        if stale:
            logger.debug("rate_limit_buckets_pruned", count=len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._buckets)


def _retire(bucket: _Bucket) -> None:
    # Callers hold the registry lock; bucket locks are always taken after it.
    with bucket.lock:
        bucket.retired = True


__all__ = ["RateLimiter"]
