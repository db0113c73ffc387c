"""
Fixed-window per-key rate limiter
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from trustlayer.errors import RateLimitExceeded
from trustlayer.services.ratelimit import (
    FixedWindowRateLimiter,
    RedisRateLimiter,
    build_rate_limiter,
)


@pytest.fixture
def limiter(clock):
    return FixedWindowRateLimiter(clock=clock)


def test_allows_up_to_limit_then_denies(limiter):
    results = [limiter.allow("k1", 3, 60) for _ in range(4)]
    assert results == [True, True, True, False]


def test_window_resets_after_expiry(limiter, clock):
    for _ in range(3):
        limiter.allow("k1", 3, 60)
    assert limiter.allow("k1", 3, 60) is False

    clock.advance(60.5)

    assert limiter.allow("k1", 3, 60) is True


def test_boundary_instant_still_counts_in_window(limiter, clock):
    limiter.allow("k1", 1, 10)
    clock.advance(10)
    # now == reset_at is still inside the window
    assert limiter.allow("k1", 1, 10) is False
    clock.advance(0.001)
    assert limiter.allow("k1", 1, 10) is True


def test_keys_are_independent(limiter):
    assert limiter.allow("a", 1, 60) is True
    assert limiter.allow("a", 1, 60) is False
    assert limiter.allow("b", 1, 60) is True


def test_decision_fields(limiter, clock):
    first = limiter.hit("k1", 2, 30)
    assert first.allowed and first.remaining == 1 and first.limit == 2
    second = limiter.hit("k1", 2, 30)
    assert second.allowed and second.remaining == 0

    clock.advance(10.2)
    denied = limiter.hit("k1", 2, 30)
    assert not denied.allowed
    assert denied.remaining == 0
    assert denied.retry_after == 20


def test_retry_after_is_at_least_one_second(limiter, clock):
    limiter.allow("k1", 1, 5)
    clock.advance(4.99)
    assert limiter.hit("k1", 1, 5).retry_after == 1


def test_enforce_raises(limiter):
    limiter.enforce("k1", 1, 60)
    with pytest.raises(RateLimitExceeded) as exc:
        limiter.enforce("k1", 1, 60)

    assert exc.value.status_code == 429
    assert exc.value.headers() == {"Retry-After": "60"}


def test_concurrent_hits_admit_exactly_limit():
    limiter = FixedWindowRateLimiter()
    barrier = threading.Barrier(20)

    def hit(_):
        try:
            barrier.wait(timeout=5)
        except threading.BrokenBarrierError:
            pass
        return limiter.allow("shared", 50, 60)

    with ThreadPoolExecutor(max_workers=20) as pool:
        results = list(pool.map(hit, range(100)))

    assert sum(results) == 50


def test_evict_expired_drops_stale_windows(limiter, clock):
    limiter.allow("old", 5, 10)
    clock.advance(5)
    limiter.allow("fresh", 5, 10)
    clock.advance(6)

    assert limiter.evict_expired() == 1
    assert len(limiter) == 1
    # Evicted key starts a new window
    assert limiter.hit("old", 5, 10).remaining == 4


def test_evict_keeps_live_windows(limiter):
    limiter.allow("k1", 5, 60)
    assert limiter.evict_expired() == 0
    assert len(limiter) == 1


def _redis_client(count, ttl_ms):
    client = MagicMock()
    client.pipeline.return_value.execute.return_value = [count, ttl_ms]
    return client


class TestRedisRateLimiter:

    def test_first_hit_sets_expiry(self):
        client = _redis_client(1, -1)
        limiter = RedisRateLimiter(client)

        decision = limiter.hit("k1", 3, 60)

        assert decision.allowed
        assert decision.remaining == 2
        client.pexpire.assert_called_once_with("rl:key:k1", 60000)

    def test_within_window_no_expiry_reset(self):
        client = _redis_client(2, 45000)
        limiter = RedisRateLimiter(client)

        assert limiter.allow("k1", 3, 60) is True
        client.pexpire.assert_not_called()

    def test_over_limit_denied_with_retry_after(self):
        client = _redis_client(4, 29500)
        limiter = RedisRateLimiter(client)

        decision = limiter.hit("k1", 3, 60)

        assert not decision.allowed
        assert decision.retry_after == 30
        with pytest.raises(RateLimitExceeded):
            limiter.enforce("k1", 3, 60)

    def test_key_without_ttl_gets_one(self):
        client = _redis_client(7, -1)
        limiter = RedisRateLimiter(client, prefix="t:")

        decision = limiter.hit("k1", 3, 60)

        assert not decision.allowed
        assert decision.retry_after == 60
        client.pexpire.assert_called_once_with("t:k1", 60000)

    def test_evict_is_noop(self):
        assert RedisRateLimiter(MagicMock()).evict_expired() == 0


def test_build_rate_limiter():
    assert isinstance(build_rate_limiter("memory"), FixedWindowRateLimiter)
    assert isinstance(build_rate_limiter("redis", "redis://localhost:6379/0"), RedisRateLimiter)
    with pytest.raises(ValueError):
        build_rate_limiter("redis")
