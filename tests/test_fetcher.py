"""Tests for the rate-limited segment fetcher."""

import asyncio

import aiohttp
import pytest

from dubsync_cli.exceptions import DecryptionError, FetchFailedError, SegmentSizeError
from dubsync_cli.media.bandwidth import TokenBucket
from dubsync_cli.media.crypto import encrypt_segment
from dubsync_cli.media.fetcher import SegmentFetcher
from dubsync_cli.media.retry import RetryPolicy
from dubsync_cli.models.variant import SegmentRef

from .fakes import FakeClock, FakeSession, RecordingSleep

URL = "https://cdn.test/seg-0.ts"


def make_fetcher(session, attempts=3, bucket=None, cancel_event=None):
    sleep = RecordingSleep()
    fetcher = SegmentFetcher(
        session,
        bucket or TokenBucket(None),
        retry_policy=RetryPolicy(max_attempts=attempts, base_delay=1.0, jitter=0.0),
        cancel_event=cancel_event,
        sleep=sleep,
    )
    return fetcher, sleep


class TestFetch:
    def test_plain_segment_is_returned_as_is(self):
        session = FakeSession({URL: b"clear bytes"})
        fetcher, _ = make_fetcher(session)

        data = asyncio.run(fetcher.fetch(SegmentRef(0, URL), None))

        assert data == b"clear bytes"
        assert session.request_count(URL) == 1

    def test_encrypted_segment_is_decrypted(self, aes_key):
        segment = SegmentRef(3, URL)
        body = encrypt_segment(b"decrypted", aes_key, segment.effective_iv)
        fetcher, _ = make_fetcher(FakeSession({URL: body}))

        assert asyncio.run(fetcher.fetch(segment, aes_key)) == b"decrypted"

    def test_byte_range_is_sent_as_range_header(self):
        session = FakeSession({URL: b"partial"})
        fetcher, _ = make_fetcher(session)

        asyncio.run(fetcher.fetch(SegmentRef(0, URL, byte_range=(100, 50)), None))

        assert session.requests[0].headers["Range"] == "bytes=100-149"


class TestRetries:
    def test_transient_errors_are_retried_with_backoff(self):
        session = FakeSession(
            {URL: [503, aiohttp.ClientConnectionError("reset"), b"finally"]}
        )
        fetcher, sleep = make_fetcher(session, attempts=3)

        assert asyncio.run(fetcher.fetch(SegmentRef(0, URL), None)) == b"finally"
        assert session.request_count(URL) == 3
        assert sleep.delays == [1.0, 2.0]

    def test_empty_body_counts_as_transient(self):
        session = FakeSession({URL: [b"", b"data"]})
        fetcher, _ = make_fetcher(session)

        assert asyncio.run(fetcher.fetch(SegmentRef(0, URL), None)) == b"data"

    def test_size_mismatch_is_retried(self, aes_key):
        segment = SegmentRef(0, URL, size_hint=9)
        short = encrypt_segment(b"decry", aes_key, segment.effective_iv)
        full = encrypt_segment(b"decrypted", aes_key, segment.effective_iv)
        session = FakeSession({URL: [short, full]})
        fetcher, _ = make_fetcher(session)

        assert asyncio.run(fetcher.fetch(segment, aes_key)) == b"decrypted"
        assert session.request_count(URL) == 2

    def test_persistent_size_mismatch_is_retryable(self):
        fetcher, _ = make_fetcher(FakeSession({URL: b"1234"}), attempts=2)

        with pytest.raises(FetchFailedError) as exc_info:
            asyncio.run(fetcher.fetch(SegmentRef(0, URL, size_hint=8), None))

        assert exc_info.value.retryable
        assert isinstance(exc_info.value.cause, SegmentSizeError)

    def test_exhausted_attempts_are_retryable_for_the_coordinator(self):
        session = FakeSession({URL: 500})
        fetcher, _ = make_fetcher(session, attempts=2)

        with pytest.raises(FetchFailedError) as exc_info:
            asyncio.run(fetcher.fetch(SegmentRef(0, URL), None))

        assert exc_info.value.retryable
        assert session.request_count(URL) == 2

    def test_permanent_http_error_is_not_retried(self):
        session = FakeSession({URL: 404})
        fetcher, sleep = make_fetcher(session, attempts=5)

        with pytest.raises(FetchFailedError) as exc_info:
            asyncio.run(fetcher.fetch(SegmentRef(0, URL), None))

        assert not exc_info.value.retryable
        assert session.request_count(URL) == 1
        assert sleep.delays == []

    def test_decryption_failure_is_fatal(self, aes_key):
        fetcher, _ = make_fetcher(FakeSession({URL: b"\x00" * 15}), attempts=5)

        with pytest.raises(FetchFailedError) as exc_info:
            asyncio.run(fetcher.fetch(SegmentRef(0, URL), aes_key))

        assert not exc_info.value.retryable
        assert isinstance(exc_info.value.cause, DecryptionError)


def test_every_chunk_draws_from_the_bucket():
    clock = FakeClock()
    bucket = TokenBucket(64 * 1024, clock=clock, sleep=clock.sleep)
    body = b"\x01" * (SegmentFetcher.CHUNK_SIZE * 4)
    fetcher, _ = make_fetcher(FakeSession({URL: body}), bucket=bucket)

    assert asyncio.run(fetcher.fetch(SegmentRef(0, URL), None)) == body
    # 256 KB at 64 KB/s with a 64 KB burst allowance
    assert clock.now == pytest.approx(3.0)


def test_cancellation_flag_aborts_the_fetch():
    cancel_event = asyncio.Event()
    cancel_event.set()
    session = FakeSession({URL: b"never read"})
    fetcher, _ = make_fetcher(session, cancel_event=cancel_event)

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(fetcher.fetch(SegmentRef(0, URL), None))
    assert session.request_count(URL) == 0
