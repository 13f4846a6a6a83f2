"""Sliding window rate limiter tests."""

import pytest

from usersvc.services.rate_limit import (
    RATE_LIMIT_CONFIG,
    InMemoryRateLimiter,
    RateLimitResult,
    RateLimitType,
    rate_limit_headers,
)


@pytest.mark.asyncio
async def test_allows_up_to_limit():
    limiter = InMemoryRateLimiter()
    limit = RATE_LIMIT_CONFIG[RateLimitType.OTP].requests

    for i in range(limit):
        result = await limiter.check("ip:1.2.3.4", RateLimitType.OTP)
        assert result.success is True
        assert result.remaining == limit - i - 1

    result = await limiter.check("ip:1.2.3.4", RateLimitType.OTP)
    assert result.success is False
    assert result.remaining == 0


@pytest.mark.asyncio
async def test_limits_are_per_client_and_type():
    limiter = InMemoryRateLimiter()
    for _ in range(RATE_LIMIT_CONFIG[RateLimitType.OTP].requests):
        await limiter.check("ip:1.2.3.4", RateLimitType.OTP)

    assert (await limiter.check("ip:5.6.7.8", RateLimitType.OTP)).success is True
    assert (await limiter.check("ip:1.2.3.4", RateLimitType.AUTH)).success is True


@pytest.mark.asyncio
async def test_reset_clears_windows():
    limiter = InMemoryRateLimiter()
    for _ in range(RATE_LIMIT_CONFIG[RateLimitType.OTP].requests):
        await limiter.check("ip:1.2.3.4", RateLimitType.OTP)

    limiter.reset()
    assert (await limiter.check("ip:1.2.3.4", RateLimitType.OTP)).success is True


def test_headers_include_retry_after_when_limited():
    headers = rate_limit_headers(RateLimitResult(success=False, limit=10, remaining=0, reset=0))
    assert headers["X-RateLimit-Limit"] == "10"
    assert headers["Retry-After"] == "1"

    ok = rate_limit_headers(RateLimitResult(success=True, limit=10, remaining=9, reset=0))
    assert "Retry-After" not in ok
