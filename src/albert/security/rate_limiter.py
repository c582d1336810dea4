# Token-bucket rate limiting for the public OAuth endpoints.
# Created: 2026-10-05
#
# Buckets live in memory and are keyed by client IP. Each app owns its own
# RateLimits, so two apps in one process never share buckets.

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field

__all__ = [
    "RateLimiter",
    "RateLimitInfo",
    "RateLimits",
]


@dataclass(frozen=True)
class RateLimitInfo:
    """Outcome of one ``RateLimiter.check()``."""

    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    def headers(self) -> dict[str, str]:
        reset = str(math.ceil(self.reset_after))
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": reset,
        }
        if not self.allowed:
            headers["Retry-After"] = reset
        return headers


@dataclass
class _Bucket:
    tokens: float
    updated: float


class RateLimiter:
    """*capacity* requests in a burst, refilled at *rate* per second.

    Buckets idle for longer than *max_idle* seconds are swept from ``check()``
    at most once per *max_idle*, so one-off client IPs do not pile up.
    """

    def __init__(
        self,
        rate: float,
        capacity: int,
        clock: Callable[[], float] = time.monotonic,
        max_idle: float = 3600.0,
    ):
        self.rate = rate
        self.capacity = capacity
        self.max_idle = max_idle
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._last_sweep = clock()

    def _refilled(self, key: str, now: float) -> _Bucket:
        bucket = self._buckets.setdefault(key, _Bucket(float(self.capacity), now))
        bucket.tokens = min(self.capacity, bucket.tokens + (now - bucket.updated) * self.rate)
        bucket.updated = now
        return bucket

    def _seconds_until(self, tokens: float) -> float:
        if self.rate <= 0:
            return 1.0
        return max(tokens, 0.0) / self.rate

    def check(self, key: str) -> RateLimitInfo:
        """Spend one token for *key* if there is one."""
        now = self._clock()
        if now - self._last_sweep >= self.max_idle:
            self.cleanup(self.max_idle)
        bucket = self._refilled(key, now)
        if bucket.tokens < 1.0:
            return RateLimitInfo(
                False, self.capacity, 0, self._seconds_until(1.0 - bucket.tokens)
            )

        bucket.tokens -= 1.0
        return RateLimitInfo(
            True,
            self.capacity,
            int(bucket.tokens),
            self._seconds_until(self.capacity - bucket.tokens),
        )

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Forget buckets idle for more than *max_age* seconds. Returns how many."""
        now = self._clock()
        self._last_sweep = now
        cutoff = now - max_age
        idle = [key for key, bucket in self._buckets.items() if bucket.updated < cutoff]
        for key in idle:
            del self._buckets[key]
        return len(idle)


@dataclass
class RateLimits:
    """Per-endpoint limiters: password login, token endpoint, client registration."""

    login: RateLimiter = field(default_factory=lambda: RateLimiter(rate=1.0, capacity=5))
    token: RateLimiter = field(default_factory=lambda: RateLimiter(rate=2.0, capacity=20))
    registration: RateLimiter = field(
        default_factory=lambda: RateLimiter(rate=0.2, capacity=10)
    )

    def cleanup_all(self, max_age: float = 3600.0) -> int:
        return sum(
            limiter.cleanup(max_age) for limiter in (self.login, self.token, self.registration)
        )
