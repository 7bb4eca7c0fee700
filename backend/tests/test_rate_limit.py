"""Tests for the token bucket rate limiter."""
from __future__ import annotations

import threading

import pytest

from hemoconnect.config import RateLimitRule
from hemoconnect.services.rate_limit import CLEANUP_INTERVAL_MS, RateLimiter


class FakeClock:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


def _limiter(clock: FakeClock, window_ms: int = 60_000, max_requests: int = 5) -> RateLimiter:
    return RateLimiter({"create-post": RateLimitRule(window_ms=window_ms, max_requests=max_requests)}, clock=clock)


class TestCheck:
    def test_first_request_allowed_and_consumes(self):
        limiter = _limiter(FakeClock())
        decision = limiter.check("u1", "create-post")
        assert decision.allowed is True
        assert decision.remaining == 4

    def test_burst_up_to_max_then_denied(self):
        limiter = _limiter(FakeClock())
        results = [limiter.check("u1", "create-post") for _ in range(6)]
        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert [r.remaining for r in results] == [4, 3, 2, 1, 0, 0]

    def test_full_window_restores_access(self):
        clock = FakeClock()
        limiter = _limiter(clock)
        for _ in range(5):
            assert limiter.check("u1", "create-post").allowed
        assert not limiter.check("u1", "create-post").allowed

        clock.advance_ms(60_000)
        assert limiter.check("u1", "create-post").allowed

    def test_partial_window_refills_floor_tokens(self):
        clock = FakeClock()
        limiter = _limiter(clock)
        for _ in range(5):
            limiter.check("u1", "create-post")

        # 12s of a 60s window at 5/window refills exactly one token
        clock.advance_ms(12_000)
        assert limiter.check("u1", "create-post").allowed is True
        assert limiter.check("u1", "create-post").allowed is False

    def test_elapsed_below_one_token_does_not_reset_refill_time(self):
        clock = FakeClock()
        limiter = _limiter(clock)
        for _ in range(5):
            limiter.check("u1", "create-post")

        # Two 7s gaps: neither alone earns a token, together they do
        clock.advance_ms(7_000)
        assert limiter.check("u1", "create-post").allowed is False
        clock.advance_ms(7_000)
        assert limiter.check("u1", "create-post").allowed is True

    def test_refill_caps_at_max(self):
        clock = FakeClock()
        limiter = _limiter(clock)
        limiter.check("u1", "create-post")
        clock.advance_ms(10 * 60_000)
        decision = limiter.check("u1", "create-post")
        assert decision.allowed is True
        assert decision.remaining == 4

    def test_buckets_are_independent_per_actor_and_class(self):
        clock = FakeClock()
        limiter = RateLimiter(
            {
                "create-post": RateLimitRule(window_ms=60_000, max_requests=1),
                "create-comment": RateLimitRule(window_ms=60_000, max_requests=1),
            },
            clock=clock,
        )
        assert limiter.check("u1", "create-post").allowed
        assert not limiter.check("u1", "create-post").allowed
        assert limiter.check("u2", "create-post").allowed
        assert limiter.check("u1", "create-comment").allowed

    def test_unknown_action_class_raises(self):
        limiter = _limiter(FakeClock())
        with pytest.raises(KeyError):
            limiter.check("u1", "teleport")


class TestCleanup:
    def test_idle_buckets_swept_after_twice_window(self):
        clock = FakeClock()
        limiter = _limiter(clock)
        limiter.check("idle", "create-post")
        assert limiter.bucket_count() == 1

        clock.advance_ms(CLEANUP_INTERVAL_MS + 1)
        limiter.check("active", "create-post")
        # "idle" was last touched > 2 windows ago and is gone
        assert limiter.bucket_count() == 1

    def test_recent_buckets_survive_sweep(self):
        clock = FakeClock()
        limiter = _limiter(clock, window_ms=10 * 60_000)
        limiter.check("recent", "create-post")
        clock.advance_ms(CLEANUP_INTERVAL_MS + 1)
        limiter.check("other", "create-post")
        assert limiter.bucket_count() == 2

    def test_swept_actor_starts_fresh(self):
        clock = FakeClock()
        limiter = _limiter(clock, max_requests=2)
        limiter.check("u1", "create-post")
        limiter.check("u1", "create-post")
        clock.advance_ms(CLEANUP_INTERVAL_MS + 1)
        assert limiter.check("u1", "create-post").remaining == 1


class TestConcurrency:
    def test_parallel_checks_never_exceed_max(self):
        limiter = _limiter(FakeClock(), max_requests=50)
        allowed = []
        lock = threading.Lock()

        def hammer():
            for _ in range(20):
                decision = limiter.check("u1", "create-post")
                with lock:
                    allowed.append(decision.allowed)

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(allowed) == 50
        assert len(allowed) == 160
