"""
Derived alignment data: fingerprint sequences and pairwise alignment results.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, eq=False)
class FingerprintSequence:
    """
    An ordered sequence of 32-bit hash frames summarizing decoded audio.

    The frame array is made read-only on construction so the sequence can be
    shared between tasks without copying.
    """

    frames: np.ndarray
    sample_rate: int
    frame_duration: float
    source_id: str = ""

    def __post_init__(self):
        frames = np.array(self.frames, dtype=np.uint32).reshape(-1)
        frames.setflags(write=False)
        object.__setattr__(self, "frames", frames)
        if self.frame_duration <= 0:
            raise ValueError("Frame duration must be positive.")

    def __len__(self) -> int:
        return int(self.frames.shape[0])

    @property
    def duration(self) -> float:
        return len(self) * self.frame_duration


@dataclass(frozen=True)
class AlignmentResult:
    """
    The best offset found between a reference and a target track.

    A positive `offset` means the target must be delayed by that many seconds
    to play in sync with the reference. The offset is only applied when the
    result is `trusted`; otherwise `applied_offset` falls back to zero.
    """

    reference_id: str
    target_id: str
    offset: float
    confidence: float
    matched_frames: int
    trusted: bool = False

    @property
    def applied_offset(self) -> float:
        return self.offset if self.trusted else 0.0

    @property
    def applied_offset_ms(self) -> int:
        return int(round(self.applied_offset * 1000))
