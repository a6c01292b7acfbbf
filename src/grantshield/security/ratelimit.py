"""
Rate Limiting - Fixed-window request counter per identifier.

Identifiers look like "ip:<addr>:<route>" or "user:<id>:<route>".
This is a fixed window, not a sliding one: a burst straddling a window
boundary can briefly exceed the nominal rate.
"""

import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from ..errors import StorageError
from ..utils.datetime import Clock, SystemClock
from ..utils.logger import error, warning
from .counters import CounterStore, InProcessCounterStore


@dataclass(frozen=True)
class RateLimitConfig:
    """Window length and request budget."""

    window_ms: int = 60_000
    max_requests: int = 100
    by_ip: bool = True
    by_user: bool = True

    @property
    def window(self) -> timedelta:
        return timedelta(milliseconds=self.window_ms)

    @property
    def retry_after_seconds(self) -> int:
        """Retry hint sent with HTTP 429: the window, rounded up to seconds."""
        return math.ceil(self.window_ms / 1000)

    @classmethod
    def from_settings(cls, settings) -> "RateLimitConfig":
        return cls(
            window_ms=settings.rate_limit_window_ms,
            max_requests=settings.rate_limit_max,
            by_ip=settings.rate_limit_by_ip,
            by_user=settings.rate_limit_by_user,
        )


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    remaining: int
    limit: int
    retry_after_seconds: int = 0


def ip_identifier(ip: str, route: str) -> str:
    return f"ip:{ip}:{route}"


def user_identifier(user_id: str, route: str) -> str:
    return f"user:{user_id}:{route}"


class RateLimiter:
    """Fixed-window limiter in front of sensitive operations.

    The increment-and-compare for an identifier is atomic in the
    counter store, so two concurrent callers can never both take the
    last slot.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        counters: Optional[CounterStore] = None,
        clock: Optional[Clock] = None,
        fail_open: bool = True,
    ):
        self._config = config or RateLimitConfig()
        self._counters = counters if counters is not None else InProcessCounterStore()
        self._clock = clock or SystemClock()
        self.fail_open = fail_open

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def allow(self, identifier: str) -> bool:
        """Count one request for `identifier`; False once the budget is spent."""
        return self.check(identifier).allowed

    def check(self, identifier: str) -> RateLimitResult:
        """Count one request and report the decision with its metadata.

        Raises:
            StorageError: the counter store failed and fail_open is off
        """
        limit = self._config.max_requests
        try:
            hit = self._counters.hit(
                identifier, self._clock.now(), self._config.window, limit
            )
        except StorageError as e:
            if not self.fail_open:
                raise
            error(f"[RateLimit] Counter store failed for {identifier}, allowing: {e}")
            return RateLimitResult(allowed=True, remaining=limit, limit=limit)

        if not hit.allowed:
            warning(f"[RateLimit] {identifier} exceeded {limit} requests per window")
            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=limit,
                retry_after_seconds=self._config.retry_after_seconds,
            )

        return RateLimitResult(
            allowed=True,
            remaining=max(0, limit - hit.count),
            limit=limit,
        )

    def reset(self, identifier: str) -> None:
        """Forget the counter for an identifier (admin action)."""
        self._counters.reset(identifier)
