from __future__ import annotations

import pytest

from livebid.transport.rate_limit import RateLimitExceeded, SlidingWindowLimiter


@pytest.mark.asyncio
async def test_window_slides(clock):
    limiter = SlidingWindowLimiter(2, 60, message="slow down", clock=clock)
    await limiter.hit("x")
    clock.advance(seconds=20)
    await limiter.hit("x")

    with pytest.raises(RateLimitExceeded) as excinfo:
        await limiter.hit("x")
    assert str(excinfo.value) == "slow down"
    assert excinfo.value.retry_after_seconds == pytest.approx(40)

    clock.advance(seconds=40)
    await limiter.hit("x")


@pytest.mark.asyncio
async def test_keys_are_independent(clock):
    limiter = SlidingWindowLimiter(1, 60, clock=clock)
    await limiter.hit("x")
    await limiter.hit("y")
    with pytest.raises(RateLimitExceeded):
        await limiter.hit("x")


def test_requires_positive_attempts():
    with pytest.raises(ValueError):
        SlidingWindowLimiter(0, 60)
