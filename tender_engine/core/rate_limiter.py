"""In-memory per-caller rate limiting for the AI endpoints."""

import threading
import time
from collections import defaultdict
from typing import Any

from fastapi import HTTPException

from tender_engine.core.config import get_settings
from tender_engine.core.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter keyed by caller.

    State is per process; each API replica enforces its own budget.
    """

    def __init__(self, requests_per_minute: int = 10, burst_size: int | None = None):
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size if burst_size is not None else requests_per_minute
        self.refill_rate = requests_per_minute / 60.0  # tokens per second

        # key -> (tokens, last_refill_time)
        self._buckets: dict[str, tuple[float, float]] = defaultdict(
            lambda: (float(self.burst_size), time.monotonic())
        )
        self._lock = threading.Lock()

    def _refill(self, key: str, now: float) -> float:
        tokens, last_refill = self._buckets[key]
        tokens = min(self.burst_size, tokens + (now - last_refill) * self.refill_rate)
        self._buckets[key] = (tokens, now)
        return tokens

    def check_limit(self, key: str, cost: float = 1.0) -> None:
        """
        Consume ``cost`` tokens for ``key``.

        Raises:
            HTTPException: 429 with a Retry-After header when the bucket is empty
        """
        with self._lock:
            now = time.monotonic()
            tokens = self._refill(key, now)
            if tokens >= cost:
                self._buckets[key] = (tokens - cost, now)
                return
            retry_after = int((cost - tokens) / self.refill_rate) + 1

        logger.warning(f"Rate limit exceeded for {key}, retry after {retry_after}s")
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )

    def get_stats(self, key: str) -> dict[str, Any]:
        with self._lock:
            tokens = self._refill(key, time.monotonic())
        return {
            "tokens_remaining": int(tokens),
            "burst_size": self.burst_size,
            "requests_per_minute": self.requests_per_minute,
        }

    def reset(self, key: str | None = None) -> None:
        """Reset one key, or every key when ``key`` is None."""
        with self._lock:
            if key is None:
                self._buckets.clear()
            else:
                self._buckets.pop(key, None)


ai_rate_limiter = RateLimiter(requests_per_minute=get_settings().AI_RATE_LIMIT_PER_MINUTE)


def check_ai_rate_limit(user_email: str) -> None:
    """
    Check the AI endpoint budget of a caller.

    Raises:
        HTTPException: 429 if rate limited
    """
    ai_rate_limiter.check_limit(f"ai:{user_email.lower()}")
