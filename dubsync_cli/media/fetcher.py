"""
Handles the download, throttling and decryption of individual stream segments.
"""

import asyncio
import logging

import aiohttp

from dubsync_cli.exceptions import (
    DecryptionError,
    EmptySegmentError,
    FetchFailedError,
    SegmentSizeError,
)
from dubsync_cli.models.variant import DecryptionKey, SegmentRef

from .bandwidth import TokenBucket
from .crypto import decrypt_segment
from .retry import RetryPolicy

log = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0"
)


def create_client_session(
    max_workers: int = 8,
    request_timeout: float = 90.0,
    user_agent: str = "",
) -> aiohttp.ClientSession:
    """
    Creates the aiohttp session shared by all fetchers of one acquisition.

    Args:
        max_workers: Concurrent fetch workers, used to size the connection pool.
        request_timeout: Socket read timeout in seconds.
        user_agent: Overrides the default browser user agent.
    """
    connector = aiohttp.TCPConnector(
        limit=max_workers * 2,  # Total connections
        limit_per_host=max_workers,  # Per-host (CDN)
        ttl_dns_cache=600,  # 10 minutes
        keepalive_timeout=30,
        enable_cleanup_closed=True,
    )
    timeout = aiohttp.ClientTimeout(
        total=None, sock_connect=15, sock_read=request_timeout
    )
    log.debug(f"Created segment pool with limit_per_host={max_workers}")
    return aiohttp.ClientSession(
        connector=connector,
        timeout=timeout,
        headers={"User-Agent": user_agent or DEFAULT_USER_AGENT},
    )


class SegmentFetcher:
    """
    Downloads one segment at a time, drawing every received chunk from the
    shared bandwidth budget before it is kept, then decrypts it.

    Transient failures are retried according to the injected `RetryPolicy`.
    Decryption failures and permanent HTTP errors are never retried.
    """

    CHUNK_SIZE = 65536  # 64 KB

    def __init__(
        self,
        session: aiohttp.ClientSession,
        bucket: TokenBucket,
        retry_policy: RetryPolicy | None = None,
        cancel_event: asyncio.Event | None = None,
        proxy: str | None = None,
        sleep=asyncio.sleep,
    ):
        self.session = session
        self.bucket = bucket
        self.retry_policy = retry_policy or RetryPolicy()
        self.cancel_event = cancel_event or asyncio.Event()
        self.proxy = proxy or None
        self._sleep = sleep

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise asyncio.CancelledError()

    async def _download(self, segment: SegmentRef) -> bytes:
        headers = {}
        if range_header := segment.range_header:
            headers["Range"] = range_header

        async with self.session.get(
            segment.url, headers=headers, proxy=self.proxy, allow_redirects=True
        ) as response:
            response.raise_for_status()
            buffer = bytearray()
            async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                self._check_cancelled()
                await self.bucket.consume(len(chunk))
                buffer.extend(chunk)

        if not buffer:
            raise EmptySegmentError(f"Empty response body for {segment.url}")
        return bytes(buffer)

    async def _decrypt(
        self, segment: SegmentRef, raw: bytes, key: DecryptionKey | None
    ) -> bytes:
        if key is None:
            data = raw
        else:
            data = await asyncio.to_thread(
                decrypt_segment, raw, key, segment.effective_iv
            )
        if segment.size_hint is not None and len(data) != segment.size_hint:
            raise SegmentSizeError(
                f"Segment {segment.index} is {len(data)} bytes, "
                f"expected {segment.size_hint}"
            )
        return data

    async def fetch(self, segment: SegmentRef, key: DecryptionKey | None) -> bytes:
        """
        Fetches and decrypts one segment.

        Raises:
            FetchFailedError: With `retryable=True` when every attempt failed
                transiently, or `retryable=False` for permanent errors.
            asyncio.CancelledError: The shared cancellation flag was set.
        """
        last_exception: BaseException | None = None
        attempts = self.retry_policy.max_attempts

        for attempt in range(1, attempts + 1):
            self._check_cancelled()
            try:
                raw = await self._download(segment)
                return await self._decrypt(segment, raw, key)
            except DecryptionError as e:
                raise FetchFailedError(segment, e, retryable=False) from e
            except Exception as e:
                if not self.retry_policy.is_transient(e):
                    raise FetchFailedError(segment, e, retryable=False) from e
                last_exception = e
                log.debug(
                    f"Segment {segment.index} attempt {attempt}/{attempts} "
                    f"failed: {e!r}. Retrying..."
                )
                if attempt < attempts:
                    await self._sleep(self.retry_policy.delay_for(attempt))

        raise FetchFailedError(segment, last_exception, retryable=True)
