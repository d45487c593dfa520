"""Tests for the retry/backoff policy."""

import asyncio
import random

import aiohttp
import pytest

from dubsync_cli.exceptions import EmptySegmentError, SegmentSizeError
from dubsync_cli.media.retry import RetryPolicy
from dubsync_cli.models.config import SyncConfig

from .fakes import http_error


def test_delays_grow_exponentially_and_are_capped():
    policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_jitter_stays_within_bounds():
    policy = RetryPolicy(
        base_delay=2.0, max_delay=30.0, jitter=0.5, rng=random.Random(7)
    )
    for _ in range(50):
        assert 2.0 <= policy.delay_for(1) <= 3.0


@pytest.mark.parametrize(
    "error, transient",
    [
        (http_error("https://x", 503), True),
        (http_error("https://x", 429), True),
        (http_error("https://x", 404), False),
        (http_error("https://x", 403), False),
        (asyncio.TimeoutError(), True),
        (aiohttp.ClientConnectionError("reset"), True),
        (EmptySegmentError("empty"), True),
        (SegmentSizeError("short"), True),
        (ValueError("bug"), False),
    ],
)
def test_transient_classification(error, transient):
    assert RetryPolicy.is_transient(error) is transient


def test_built_from_config():
    config = SyncConfig(fetch_attempts=5, retry_base_delay=0.5, retry_max_delay=4.0)
    policy = RetryPolicy.from_config(config)
    assert (policy.max_attempts, policy.base_delay, policy.max_delay) == (5, 0.5, 4.0)


def test_requires_an_attempt():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
