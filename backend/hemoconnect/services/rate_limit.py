"""In-process token bucket rate limiter, keyed by actor and action class.

Buckets are created on first sight of a key and refilled lazily on every
check; there is no background thread. State is process-local and is lost on
restart, which briefly fails open.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from hemoconnect.config import RateLimitRule

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_MS = 5 * 60 * 1000


@dataclass
class TokenBucket:
    tokens: int
    last_refill_ms: float


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    remaining: int


class RateLimiter:
    """Lazy token bucket limiter.

    ``clock`` returns seconds (``time.monotonic`` by default) and is
    injectable so tests can move time deterministically.
    """

    __slots__ = ("_rules", "_clock", "_buckets", "_lock", "_last_cleanup_ms")

    def __init__(
        self,
        rules: Mapping[str, RateLimitRule],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rules = dict(rules)
        self._clock = clock
        self._buckets: dict[tuple[str, str], TokenBucket] = {}
        self._lock = threading.Lock()
        self._last_cleanup_ms = self._now_ms()

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def check(self, actor_id: str, action_class: str) -> RateLimitDecision:
        """Consume one token for ``(actor_id, action_class)`` if one is available.

        Raises KeyError for an action class with no configured rule.
        """
        rule = self._rules[action_class]
        key = (actor_id, action_class)

        with self._lock:
            now = self._now_ms()
            self._maybe_cleanup(now)

            bucket = self._buckets.get(key)
            if bucket is None:
                # The first request is itself consumed
                remaining = max(rule.max_requests - 1, 0)
                self._buckets[key] = TokenBucket(tokens=remaining, last_refill_ms=now)
                return RateLimitDecision(allowed=rule.max_requests > 0, remaining=remaining)

            elapsed = now - bucket.last_refill_ms
            tokens_to_add = math.floor(elapsed / rule.window_ms * rule.max_requests)
            if tokens_to_add > 0:
                bucket.tokens = min(rule.max_requests, bucket.tokens + tokens_to_add)
                bucket.last_refill_ms = now

            if bucket.tokens > 0:
                bucket.tokens -= 1
                return RateLimitDecision(allowed=True, remaining=bucket.tokens)

        logger.info("Rate limit exceeded for %s on %s", actor_id, action_class)
        return RateLimitDecision(allowed=False, remaining=0)

    def _maybe_cleanup(self, now: float) -> None:
        """Drop buckets idle for more than twice their window. Caller holds the lock."""
        if now - self._last_cleanup_ms < CLEANUP_INTERVAL_MS:
            return
        self._last_cleanup_ms = now

        stale = [
            key
            for key, bucket in self._buckets.items()
            if now - bucket.last_refill_ms > self._rules[key[1]].window_ms * 2
        ]
        for key in stale:
            del self._buckets[key]
        if stale:
            logger.debug("Rate limiter swept %d stale bucket(s)", len(stale))

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)
