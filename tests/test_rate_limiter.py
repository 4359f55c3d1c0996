"""Tests for the AI endpoint rate limiter."""

import pytest
from fastapi import HTTPException

from tender_engine.core.rate_limiter import RateLimiter, ai_rate_limiter, check_ai_rate_limit


def test_burst_then_limited():
    limiter = RateLimiter(requests_per_minute=2)

    limiter.check_limit("user")
    limiter.check_limit("user")
    with pytest.raises(HTTPException) as exc_info:
        limiter.check_limit("user")

    assert exc_info.value.status_code == 429
    assert int(exc_info.value.headers["Retry-After"]) >= 1


def test_keys_are_independent():
    limiter = RateLimiter(requests_per_minute=1)

    limiter.check_limit("a")
    limiter.check_limit("b")
    with pytest.raises(HTTPException):
        limiter.check_limit("a")


def test_reset_restores_budget():
    limiter = RateLimiter(requests_per_minute=1)
    limiter.check_limit("user")

    limiter.reset("user")
    limiter.check_limit("user")

    limiter.reset()
    assert limiter.get_stats("user")["tokens_remaining"] == 1


def test_stats():
    limiter = RateLimiter(requests_per_minute=10, burst_size=3)
    limiter.check_limit("user")

    stats = limiter.get_stats("user")
    assert stats["tokens_remaining"] == 2
    assert stats["burst_size"] == 3


def test_ai_limit_is_case_insensitive():
    for _ in range(ai_rate_limiter.burst_size):
        check_ai_rate_limit("Buyer@Example.com")

    with pytest.raises(HTTPException):
        check_ai_rate_limit("buyer@example.com")
