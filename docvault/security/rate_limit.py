"""
DocVault Rate Limiting — Fixed-window request counters keyed by caller.

Two interchangeable limiters behind one `is_limited(key)` interface:
- FixedWindowRateLimiter: process-local dict, reset on restart
- RedisRateLimiter: INCR + EXPIRE per window for multi-instance deployments

It is a coarse abuse guard, not a correctness mechanism; the Redis
limiter fails open when Redis is unreachable.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Mapping, Optional, Protocol, Tuple

from docvault.engine.config import RateLimitConfig

logger = logging.getLogger("docvault.security.rate_limit")


class RateLimiter(Protocol):
    def is_limited(self, key: str) -> bool:
        ...


class FixedWindowRateLimiter:
    """
    In-process fixed-window counter.

    The first request in a window opens it; requests beyond max_requests
    inside the window are limited until it expires.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}  # key → (count, reset_at)
        self._lock = threading.Lock()
        self._next_prune = clock() + window_seconds

    def is_limited(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            if now > self._next_prune:
                self._prune_locked(now)
            count, reset_at = self._counters.get(key, (0, 0.0))
            if count == 0 or now > reset_at:
                self._counters[key] = (1, now + self._window)
                return False
            if count >= self._max_requests:
                return True
            self._counters[key] = (count + 1, reset_at)
            return False

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()

    def prune(self) -> int:
        """Drop expired windows. Returns the number removed."""
        with self._lock:
            return self._prune_locked(self._clock())

    def _prune_locked(self, now: float) -> int:
        # Swept at most once per window from is_limited, so idle keys do not pile up.
        expired = [k for k, (_, reset_at) in self._counters.items() if now > reset_at]
        for k in expired:
            del self._counters[k]
        self._next_prune = now + self._window
        return len(expired)


class RedisRateLimiter:
    """
    Fixed-window limiter backed by Redis.

    Key format: {prefix}{key}; the first INCR in a window sets EXPIRE.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/5",
        max_requests: int = 100,
        window_seconds: int = 60,
        prefix: str = "docvault:rate:",
        client=None,
    ):
        self._redis_url = redis_url
        self._max_requests = max_requests
        self._window = window_seconds
        self._prefix = prefix
        self._client = client

    def connect(self) -> bool:
        """Initialize the Redis connection."""
        try:
            import redis
            self._client = redis.Redis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            self._client.ping()
            logger.info(f"Rate limiter connected to Redis ({self._prefix})")
            return True
        except Exception as e:
            logger.warning(f"Redis connection failed for rate limiting: {e}")
            self._client = None
            return False

    def is_limited(self, key: str) -> bool:
        if self._client is None:
            return False
        full_key = f"{self._prefix}{key}"
        try:
            count = self._client.incr(full_key)
            if count == 1:
                self._client.expire(full_key, self._window)
        except Exception as e:
            logger.debug(f"Redis INCR failed, allowing request: {e}")
            return False
        return count > self._max_requests


def create_rate_limiter(config: RateLimitConfig) -> Optional[RateLimiter]:
    """Build the configured limiter, or None when rate limiting is off."""
    if not config.enabled:
        return None
    if config.backend == "redis":
        limiter = RedisRateLimiter(
            redis_url=config.redis_url,
            max_requests=config.max_requests,
            window_seconds=config.window_seconds,
        )
        limiter.connect()
        return limiter
    return FixedWindowRateLimiter(
        max_requests=config.max_requests,
        window_seconds=config.window_seconds,
    )


def client_address(headers: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """
    Pick the caller address used as the rate-limit key.

    Order: first x-forwarded-for entry, x-real-ip, cf-connecting-ip,
    then the socket peer, else "unknown".
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    for name in ("x-real-ip", "cf-connecting-ip"):
        value = headers.get(name)
        if value:
            return value
    return fallback or "unknown"
