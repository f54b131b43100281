from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from titan_billing.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: int


# Named policies consulted by route dependencies.
RATE_LIMIT_POLICIES: dict[str, RateLimitPolicy] = {
    "api": RateLimitPolicy(limit=20, window_seconds=10),
    "auth": RateLimitPolicy(limit=5, window_seconds=60),
    "payment": RateLimitPolicy(limit=10, window_seconds=60),
    "strict": RateLimitPolicy(limit=3, window_seconds=60),
    "public": RateLimitPolicy(limit=50, window_seconds=60),
}


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int
    limit: int
    remaining: int
    count: int
    window_reset_epoch: int
    limiter_key: str
    window_seconds: int


class RateLimiter(Protocol):
    def check(
        self,
        *,
        identifier: str,
        route_key: str,
        limit: int,
        window_seconds: int,
        now: float | None = None,
    ) -> RateLimitResult:
        ...

    def sweep(self, now: float | None = None) -> int:
        ...

    def clear(self, identifier: str) -> None:
        ...


class NoopRateLimiter:
    """
    Disabled limiter that always allows requests. Used when rate limiting is turned off.
    """

    def check(
        self,
        *,
        identifier: str,
        route_key: str,
        limit: int,
        window_seconds: int,
        now: float | None = None,
    ) -> RateLimitResult:
        now_ts = int(now or time.time())
        return RateLimitResult(
            allowed=True,
            retry_after_seconds=0,
            limit=limit,
            remaining=max(0, limit),
            count=0,
            window_reset_epoch=now_ts + window_seconds,
            limiter_key=f"noop:{route_key}:window:{window_seconds}",
            window_seconds=window_seconds,
        )

    def sweep(self, now: float | None = None) -> int:
        return 0

    def clear(self, identifier: str) -> None:
        return None


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """
    Process-local fixed window counter keyed by (route_key, identifier).

    The first request for a key opens a window of ``window_seconds``; once the
    window end has passed the next request starts a fresh window at count 1.
    State is lost on restart and is only shared within one process.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._windows: dict[tuple[str, str], _Window] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    @staticmethod
    def _limiter_key(route_key: str, identifier: str) -> str:
        return f"rate_limit:{route_key}:{identifier}"

    def check(
        self,
        *,
        identifier: str,
        route_key: str,
        limit: int,
        window_seconds: int,
        now: float | None = None,
    ) -> RateLimitResult:
        now_ts = self._clock() if now is None else now
        key = (route_key, identifier)

        with self._lock:
            window = self._windows.get(key)
            if window is None or now_ts >= window.reset_at:
                window = _Window(count=0, reset_at=now_ts + window_seconds)
                self._windows[key] = window
            window.count += 1
            count = window.count
            reset_at = window.reset_at

        allowed = count <= limit
        retry_after = 0 if allowed else max(1, math.ceil(reset_at - now_ts))
        return RateLimitResult(
            allowed=allowed,
            retry_after_seconds=retry_after,
            limit=limit,
            remaining=max(0, limit - count),
            count=count,
            window_reset_epoch=math.ceil(reset_at),
            limiter_key=self._limiter_key(route_key, identifier),
            window_seconds=window_seconds,
        )

    def sweep(self, now: float | None = None) -> int:
        """Drop expired windows. Returns how many were removed."""
        now_ts = self._clock() if now is None else now
        with self._lock:
            expired = [key for key, window in self._windows.items() if now_ts >= window.reset_at]
            for key in expired:
                del self._windows[key]
        if expired:
            logger.debug("Swept %s expired rate limit windows", len(expired))
        return len(expired)

    def clear(self, identifier: str) -> None:
        """Forget every window held for one identifier (admin override / tests)."""
        with self._lock:
            for key in [k for k in self._windows if k[1] == identifier]:
                del self._windows[key]


def build_rate_limiter() -> RateLimiter:
    if not settings.RATE_LIMIT_ENABLED:
        logger.info("Rate limiting disabled via RATE_LIMIT_ENABLED=false; using NoopRateLimiter")
        return NoopRateLimiter()
    logger.info("Rate limiting enabled using in-process windows")
    return InMemoryRateLimiter()
