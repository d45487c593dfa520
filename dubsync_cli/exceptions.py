"""
Defines custom exceptions for the application to allow for more specific error handling.
"""

from collections.abc import Iterable


class DubsyncError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(DubsyncError):
    """Raised for issues related to configuration loading or validation."""


class CatalogError(DubsyncError):
    """Raised when an episode cannot be resolved into downloadable variants."""


class DuplicateSegmentError(DubsyncError):
    """Raised when a segment index is re-delivered with different content."""

    def __init__(self, variant_id: str, index: int):
        super().__init__(
            f"Segment {index} of '{variant_id}' was already written with "
            "different content."
        )
        self.variant_id = variant_id
        self.index = index


class IncompleteTrackError(DubsyncError):
    """Raised when the full byte stream of an unfinished track is requested."""

    def __init__(self, variant_id: str, missing: Iterable[int]):
        self.variant_id = variant_id
        self.missing = list(missing)
        preview = ", ".join(map(str, self.missing[:10]))
        if len(self.missing) > 10:
            preview += ", ..."
        super().__init__(
            f"Track '{variant_id}' is incomplete: {len(self.missing)} segment(s) "
            f"missing ({preview})."
        )


class DecryptionError(DubsyncError):
    """Raised when segment ciphertext cannot be decrypted with the given key."""


class EmptySegmentError(DubsyncError):
    """Raised when the server answers a segment request with an empty body."""


class SegmentSizeError(DubsyncError):
    """Raised when a segment does not have the size the catalog announced."""


class FetchFailedError(DubsyncError):
    """
    Raised when a segment could not be fetched.

    `retryable` tells the coordinator whether the segment may be scheduled again
    (transient failures that exhausted the fetcher's own attempts) or whether the
    owning variant must be failed (permanent HTTP errors, decryption failures).
    """

    def __init__(self, segment, cause: BaseException, retryable: bool):
        super().__init__(f"Failed to fetch segment {segment.index}: {cause}")
        self.segment = segment
        self.cause = cause
        self.retryable = retryable


class VariantFailedError(DubsyncError):
    """Raised when a consumer waits on a variant whose acquisition failed."""

    def __init__(self, variant_id: str, cause: BaseException | None = None):
        message = f"Variant '{variant_id}' failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
        self.variant_id = variant_id
        self.cause = cause


class AllVariantsFailedError(DubsyncError):
    """Raised when no requested variant could be acquired."""

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report


class AcquisitionCancelledError(DubsyncError):
    """Raised when acquisition stopped because the cancellation flag was set."""


class SessionLockedError(DubsyncError):
    """Raised when another process already holds the session for an output target."""


class DecoderError(DubsyncError):
    """Raised when the external decoder cannot produce PCM samples."""


class MuxToolError(DubsyncError):
    """Raised when the external mux tool fails or produces no usable output."""

    def __init__(self, exit_code: int, stderr: str):
        summary = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"Mux tool exited with code {exit_code}: {summary}")
        self.exit_code = exit_code
        self.stderr = stderr
