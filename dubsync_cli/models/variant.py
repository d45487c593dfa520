"""
Immutable descriptions of the tracks a catalog resolves for an episode.
"""

from dataclasses import dataclass, field
from enum import Enum


class TrackKind(str, Enum):
    """The role a variant plays in the final container."""

    VIDEO = "video"
    AUDIO = "audio"
    SUBTITLE = "subtitle"


@dataclass(frozen=True)
class DecryptionKey:
    """Key material for AES-128 encrypted segments."""

    key_id: str
    key: bytes
    method: str = "AES-128"

    def __post_init__(self):
        if self.method != "AES-128":
            raise ValueError(f"Unsupported encryption method: {self.method}")
        if len(self.key) != 16:
            raise ValueError(
                f"AES-128 key '{self.key_id}' must be 16 bytes, got {len(self.key)}."
            )


@dataclass(frozen=True)
class SegmentRef:
    """
    A single fetchable chunk of a variant's stream.

    `size_hint` is the expected decrypted size when the catalog knows it, and
    `byte_range` is an `(offset, length)` pair for byte-range addressed media.
    When `iv` is not given, the sequence index is used as the IV.
    """

    index: int
    url: str
    size_hint: int | None = None
    byte_range: tuple[int, int] | None = None
    iv: bytes | None = None

    def __post_init__(self):
        if self.index < 0:
            raise ValueError(f"Segment index must be non-negative, got {self.index}.")
        if self.iv is not None and len(self.iv) != 16:
            raise ValueError(f"Segment {self.index} IV must be 16 bytes.")

    @property
    def effective_iv(self) -> bytes:
        """The IV used for decryption, defaulting to the big-endian sequence index."""
        return self.iv if self.iv is not None else self.index.to_bytes(16, "big")

    @property
    def range_header(self) -> str | None:
        """The HTTP Range header value for byte-range addressed segments."""
        if self.byte_range is None:
            return None
        offset, length = self.byte_range
        return f"bytes={offset}-{offset + length - 1}"


@dataclass(frozen=True)
class Variant:
    """
    One downloadable track for a given locale.

    `release` names the regional release the track was cut from (defaulting to
    its own locale). Tracks of the same release share timing, so a subtitle
    track is shifted by the offset measured for its release's audio.
    """

    locale: str
    kind: TrackKind
    segments: tuple[SegmentRef, ...]
    key_ref: str | None = None
    duration: float = 0.0
    variant_id: str = ""
    title: str | None = None
    release: str = ""
    extension: str = field(default="", compare=False)

    def __post_init__(self):
        ordered = tuple(sorted(self.segments, key=lambda s: s.index))
        if not ordered:
            raise ValueError(f"{self.kind.value}/{self.locale} has no segments.")
        if [s.index for s in ordered] != list(range(len(ordered))):
            raise ValueError(
                f"Segments of {self.kind.value}/{self.locale} must be indexed "
                "contiguously from 0."
            )
        object.__setattr__(self, "segments", ordered)
        if not self.variant_id:
            object.__setattr__(self, "variant_id", f"{self.kind.value}-{self.locale}")
        if not self.release:
            object.__setattr__(self, "release", self.locale)
        if not self.extension:
            default_ext = {
                TrackKind.VIDEO: "ts",
                TrackKind.AUDIO: "ts",
                TrackKind.SUBTITLE: "ass",
            }
            object.__setattr__(self, "extension", default_ext[self.kind])

    @property
    def id(self) -> str:
        return self.variant_id

    @property
    def segment_count(self) -> int:
        return len(self.segments)

    @property
    def encrypted(self) -> bool:
        return self.key_ref is not None

    def __str__(self) -> str:
        return self.variant_id
