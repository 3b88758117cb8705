"""Tests for the per-provider rate limiter."""

import asyncio

import pytest

from brokerlink.client import RateLimiter
from brokerlink.errors import RateLimited


@pytest.fixture
def limiter(clock):
    return RateLimiter(max_requests=20, window_seconds=60.0, clock=clock, sleep=clock.sleep)


def test_burst_over_ceiling_is_delayed_not_dropped(limiter, clock):
    """25 concurrent requests: 20 go now, 5 wait for the next window."""

    async def run():
        return await asyncio.gather(*(limiter.acquire("robinhood") for _ in range(25)))

    waits = asyncio.run(run())

    assert waits.count(0.0) == 20
    assert waits.count(60.0) == 5
    assert clock.sleeps == [60.0] * 5
    assert limiter.remaining("robinhood") == 15


def test_try_acquire_raises_with_retry_after(limiter, clock):
    for _ in range(20):
        limiter.try_acquire("webull")
    clock.advance(15)

    with pytest.raises(RateLimited) as exc_info:
        limiter.try_acquire("webull")

    assert exc_info.value.retry_after == pytest.approx(45.0)
    assert exc_info.value.provider == "webull"


def test_window_resets_after_elapsed(limiter, clock):
    for _ in range(20):
        limiter.try_acquire("robinhood")
    assert limiter.remaining("robinhood") == 0

    clock.advance(60)

    assert limiter.remaining("robinhood") == 20
    limiter.try_acquire("robinhood")
    assert limiter.remaining("robinhood") == 19


def test_keys_are_independent(limiter):
    for _ in range(20):
        limiter.try_acquire("robinhood")

    limiter.try_acquire("webull")
    assert limiter.remaining("webull") == 19


def test_reset(limiter):
    limiter.try_acquire("robinhood")
    limiter.try_acquire("webull")

    limiter.reset("robinhood")
    assert limiter.remaining("robinhood") == 20
    assert limiter.remaining("webull") == 19

    limiter.reset()
    assert limiter.remaining("webull") == 20


@pytest.mark.parametrize("kwargs", [{"max_requests": 0}, {"window_seconds": 0}])
def test_invalid_configuration(kwargs):
    with pytest.raises(ValueError):
        RateLimiter(**kwargs)
