"""
Media Processing Layer.

This package is responsible for moving media bytes: throttled segment
fetching, retry policy, segment decryption and PCM decoding.
"""

from .bandwidth import TokenBucket
from .decoder import AudioDecoder, FFmpegDecoder
from .fetcher import SegmentFetcher, create_client_session
from .retry import RetryPolicy

__all__ = [
    "AudioDecoder",
    "FFmpegDecoder",
    "RetryPolicy",
    "SegmentFetcher",
    "TokenBucket",
    "create_client_session",
]
