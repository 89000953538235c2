from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from threading import Lock

from app.core.config import (
    AUTH_RATE_LIMIT,
    AUTH_RATE_WINDOW_SECONDS,
    PAYMENT_RATE_LIMIT,
    PAYMENT_RATE_WINDOW_SECONDS,
)


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: int


DEFAULT_RULES: dict[str, RateLimitRule] = {
    "auth": RateLimitRule(limit=AUTH_RATE_LIMIT, window_seconds=AUTH_RATE_WINDOW_SECONDS),
    "payment": RateLimitRule(limit=PAYMENT_RATE_LIMIT, window_seconds=PAYMENT_RATE_WINDOW_SECONDS),
}


class RateLimiterService(ABC):
    @abstractmethod
    def check(self, *, client_key: str, bucket: str) -> RateLimitDecision:
        """Decide whether one more request from client_key may hit bucket."""

    @abstractmethod
    def reset(self) -> None:
        """Forget every recorded hit."""


class InMemoryRateLimiterService(RateLimiterService):
    """Sliding-window limiter kept in process memory.

    Counters are per worker process; a shared store is needed once the API
    runs with several workers behind a load balancer.
    """

    def __init__(self, rules: dict[str, RateLimitRule] | None = None) -> None:
        self.rules = dict(rules or DEFAULT_RULES)
        self._store: dict[tuple[str, str], deque[float]] = {}
        self._lock = Lock()

    def check(self, *, client_key: str, bucket: str) -> RateLimitDecision:
        rule = self.rules[bucket]
        now = time.monotonic()
        key = (client_key, bucket)

        with self._lock:
            hits = self._store.setdefault(key, deque())
            cutoff = now - rule.window_seconds
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= rule.limit:
                retry_after = max(1, int(rule.window_seconds - (now - hits[0])))
                return RateLimitDecision(
                    allowed=False,
                    limit=rule.limit,
                    remaining=0,
                    retry_after_seconds=retry_after,
                )

            hits.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=rule.limit,
                remaining=max(0, rule.limit - len(hits)),
                retry_after_seconds=0,
            )

    def reset(self) -> None:
        with self._lock:
            self._store.clear()


rate_limiter = InMemoryRateLimiterService()
