"""
Fixed-window per-key request throttle.

Each key gets a counter that resets at discrete window boundaries. Bursts
straddling a boundary can reach twice the limit; that is the accepted
behaviour of a fixed window.
"""
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis

from ..errors import RateLimitExceeded


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int
    reset_at: float


class _Window:
    __slots__ = ("count", "reset_at", "lock", "evicted")

    def __init__(self):
        self.count = 0
        self.reset_at = 0.0
        self.lock = threading.Lock()
        self.evicted = False


class FixedWindowRateLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def _window(self, key_id: str) -> _Window:
        with self._lock:
            window = self._windows.get(key_id)
            if window is None:
                window = self._windows[key_id] = _Window()
            return window

    def hit(self, key_id: str, limit: int, window_seconds: float) -> RateLimitDecision:
        while True:
            window = self._window(key_id)
            with window.lock:
                if window.evicted:
                    # Swept between lookup and lock; pick up the replacement
                    continue
                now = self._clock()
                if window.count == 0 or now > window.reset_at:
                    window.count = 1
                    window.reset_at = now + window_seconds
                    return RateLimitDecision(True, limit, max(limit - 1, 0), 0, window.reset_at)

                window.count += 1
                if window.count > limit:
                    retry_after = max(math.ceil(window.reset_at - now), 1)
                    return RateLimitDecision(False, limit, 0, retry_after, window.reset_at)
                return RateLimitDecision(True, limit, limit - window.count, 0, window.reset_at)

    def allow(self, key_id: str, limit: int, window_seconds: float) -> bool:
        return self.hit(key_id, limit, window_seconds).allowed

    def enforce(self, key_id: str, limit: int, window_seconds: float) -> RateLimitDecision:
        decision = self.hit(key_id, limit, window_seconds)
        if not decision.allowed:
            raise RateLimitExceeded(decision.retry_after, limit, window_seconds)
        return decision

    def evict_expired(self) -> int:
        """Drop windows whose reset time has passed. Returns how many were dropped."""
        now = self._clock()
        dropped = 0
        with self._lock:
            for key_id, window in list(self._windows.items()):
                if not window.lock.acquire(blocking=False):
                    continue
                try:
                    if now > window.reset_at:
                        window.evicted = True
                        del self._windows[key_id]
                        dropped += 1
                finally:
                    window.lock.release()
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class RedisRateLimiter:
    """Same fixed-window contract backed by Redis ``INCR``, shared across processes."""

    def __init__(self, client: "redis.Redis", prefix: str = "rl:key:"):
        self.r = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisRateLimiter":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def hit(self, key_id: str, limit: int, window_seconds: float) -> RateLimitDecision:
        key = f"{self.prefix}{key_id}"
        window_ms = int(window_seconds * 1000)

        p = self.r.pipeline()
        p.incr(key)
        p.pttl(key)
        count, ttl_ms = p.execute()
        count = int(count)
        ttl_ms = int(ttl_ms)
        if count == 1 or ttl_ms < 0:
            # First hit opens the window; a key left without expiry gets one too
            self.r.pexpire(key, window_ms)
            ttl_ms = window_ms

        reset_at = time.time() + ttl_ms / 1000
        if count > limit:
            return RateLimitDecision(False, limit, 0, max(math.ceil(ttl_ms / 1000), 1), reset_at)
        return RateLimitDecision(True, limit, limit - count, 0, reset_at)

    def allow(self, key_id: str, limit: int, window_seconds: float) -> bool:
        return self.hit(key_id, limit, window_seconds).allowed

    def enforce(self, key_id: str, limit: int, window_seconds: float) -> RateLimitDecision:
        decision = self.hit(key_id, limit, window_seconds)
        if not decision.allowed:
            raise RateLimitExceeded(decision.retry_after, limit, window_seconds)
        return decision

    def evict_expired(self) -> int:
        # Redis expires windows itself
        return 0


def build_rate_limiter(backend: str, redis_url: Optional[str] = None):
    if backend == "redis":
        if not redis_url:
            raise ValueError("RATE_LIMIT_BACKEND=redis requires REDIS_URL")
        return RedisRateLimiter.from_url(redis_url)
    return FixedWindowRateLimiter()
