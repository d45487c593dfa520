"""Tests for the shared token-bucket bandwidth limiter."""

import asyncio

import pytest

from dubsync_cli.media.bandwidth import TokenBucket

from .fakes import FakeClock


def test_unlimited_bucket_never_waits():
    bucket = TokenBucket(None)

    async def scenario():
        return [await bucket.consume(10**9) for _ in range(3)]

    assert asyncio.run(scenario()) == [0.0, 0.0, 0.0]
    assert bucket.unlimited


def test_burst_within_capacity_is_free():
    clock = FakeClock()
    bucket = TokenBucket(1000, capacity=1000, clock=clock, sleep=clock.sleep)

    assert asyncio.run(bucket.consume(1000)) == 0.0
    assert clock.slept == 0.0


def test_deficit_is_slept_off_at_the_configured_rate():
    clock = FakeClock()
    bucket = TokenBucket(1000, capacity=1000, clock=clock, sleep=clock.sleep)

    async def scenario():
        await bucket.consume(1000)
        return await bucket.consume(500)

    assert asyncio.run(scenario()) == pytest.approx(0.5)
    assert clock.now == pytest.approx(0.5)


def test_requests_larger_than_capacity_are_served():
    clock = FakeClock()
    bucket = TokenBucket(100, capacity=100, clock=clock, sleep=clock.sleep)

    waited = asyncio.run(bucket.consume(1000))

    assert waited == pytest.approx(9.0)


def test_tokens_refill_with_elapsed_time():
    clock = FakeClock()
    bucket = TokenBucket(100, capacity=200, clock=clock, sleep=clock.sleep)

    async def scenario():
        await bucket.consume(200)
        clock.now += 1.0
        return await bucket.available()

    assert asyncio.run(scenario()) == pytest.approx(100)


def test_concurrent_consumers_never_exceed_rate_plus_burst():
    clock = FakeClock()
    rate, capacity = 10_000, 2_000
    bucket = TokenBucket(rate, capacity=capacity, clock=clock, sleep=clock.sleep)
    chunk, chunks_per_worker, workers = 1_500, 20, 6

    async def worker():
        for _ in range(chunks_per_worker):
            await bucket.consume(chunk)

    async def scenario():
        await asyncio.gather(*(worker() for _ in range(workers)))

    asyncio.run(scenario())

    total = chunk * chunks_per_worker * workers
    # Over any run, bytes admitted <= rate * elapsed + capacity.
    assert total <= rate * clock.now + capacity + 1e-6


def test_rejects_non_positive_rate():
    with pytest.raises(ValueError):
        TokenBucket(0)
