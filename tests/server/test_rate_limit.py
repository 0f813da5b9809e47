"""Tests for per-caller rate limiting."""

from __future__ import annotations

import json

import pytest

from peerwager.server.rate_limit import RateLimiter, RateLimitResult, rate_limit_response


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestRateLimiter:
    def test_allows_up_to_limit(self, clock):
        limiter = RateLimiter(2, clock=clock)

        assert limiter.check("alice", "vote").allowed
        assert limiter.check("alice", "vote").allowed
        denied = limiter.check("alice", "vote")

        assert not denied.allowed
        assert denied.key == "user:alice:vote"

    def test_keyed_by_user_and_endpoint(self, clock):
        limiter = RateLimiter(1, clock=clock)

        assert limiter.check("alice", "vote").allowed
        assert limiter.check("alice", "respond").allowed
        assert limiter.check("bob", "vote").allowed
        assert not limiter.check("alice", "vote").allowed

    def test_window_slides(self, clock):
        limiter = RateLimiter(1, window_seconds=60, clock=clock)
        assert limiter.check("alice", "vote").allowed

        clock.now += 59
        assert not limiter.check("alice", "vote").allowed

        clock.now += 2
        assert limiter.check("alice", "vote").allowed

    def test_retry_after_counts_down_to_oldest_hit(self, clock):
        limiter = RateLimiter(1, window_seconds=60, clock=clock)
        limiter.check("alice", "vote")

        clock.now += 45.5
        denied = limiter.check("alice", "vote")

        assert denied.retry_after == 15

    def test_idle_buckets_are_evicted(self, clock):
        limiter = RateLimiter(5, window_seconds=60, clock=clock)
        for i in range(100):
            limiter.check(f"user-{i}", "unlock")
        assert len(limiter) == 100

        clock.now += 61
        limiter.check("latecomer", "unlock")

        assert len(limiter) == 1

    def test_zero_window_keeps_no_history(self, clock):
        limiter = RateLimiter(1, window_seconds=0, clock=clock)

        for i in range(1000):
            clock.now += 0.001
            assert limiter.check(f"user-{i}", "vote").allowed

        assert len(limiter) <= 1

    def test_sweep_keeps_active_buckets(self, clock):
        limiter = RateLimiter(5, window_seconds=60, clock=clock)
        limiter.check("alice", "vote")
        clock.now += 30
        limiter.check("bob", "vote")

        clock.now += 31
        limiter.sweep()

        assert len(limiter) == 1
        assert limiter.check("bob", "vote").allowed


class TestResponse:
    def test_response(self):
        resp = rate_limit_response(RateLimitResult(allowed=False, key="user:alice:vote", retry_after=30))

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "30"
        assert json.loads(resp.body)["details"] == {"retry_after": 30}
