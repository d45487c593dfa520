"""
Estimates the time offset between two fingerprint sequences of the same content.
"""

import logging
from collections.abc import Sequence

import numpy as np

from dubsync_cli.models.fingerprint import AlignmentResult, FingerprintSequence

from .fingerprint import HASH_BITS

log = logging.getLogger(__name__)

_POPCOUNT_TABLE = np.array([bin(i).count("1") for i in range(256)], dtype=np.uint8)


def hamming_distances(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Per-frame Hamming distance between two equally long uint32 hash arrays."""
    xor = np.bitwise_xor(a, b).astype("<u4")
    return _POPCOUNT_TABLE[xor.view(np.uint8)].reshape(-1, 4).sum(axis=1)


class AlignmentEngine:
    """
    Sliding-window Hamming-distance matcher over hash frames.

    For every candidate shift `k` within the search window, target frame `i`
    is compared with reference frame `i + k` across the overlap of the two
    sequences. The shift with the lowest mean distance wins; among equally good
    shifts, the one closest to zero is kept. A positive shift means the target
    lags behind the reference and has to be delayed.
    """

    def __init__(
        self,
        max_offset_seconds: float = 120.0,
        similarity_threshold_bits: int = 10,
        min_overlap_frames: int = 50,
        confidence_threshold: float = 0.5,
    ):
        if not 0 <= similarity_threshold_bits <= HASH_BITS:
            raise ValueError(f"Similarity threshold must be within 0..{HASH_BITS}.")
        self.max_offset_seconds = max_offset_seconds
        self.similarity_threshold_bits = similarity_threshold_bits
        self.min_overlap_frames = max(1, min_overlap_frames)
        self.confidence_threshold = confidence_threshold

    @classmethod
    def from_config(cls, config) -> "AlignmentEngine":
        return cls(
            max_offset_seconds=config.max_offset_seconds,
            similarity_threshold_bits=config.similarity_threshold_bits,
            min_overlap_frames=config.min_overlap_frames,
            confidence_threshold=config.confidence_threshold,
        )

    @staticmethod
    def _check_compatible(
        reference: FingerprintSequence, target: FingerprintSequence
    ) -> None:
        if reference.sample_rate != target.sample_rate or not np.isclose(
            reference.frame_duration, target.frame_duration
        ):
            raise ValueError(
                "Fingerprints were derived with different parameters "
                f"({reference.sample_rate} Hz/{reference.frame_duration:.4f}s vs "
                f"{target.sample_rate} Hz/{target.frame_duration:.4f}s)."
            )

    def _candidate_shifts(self, n_ref: int, n_tgt: int, frame_duration: float):
        """Yields in-window shifts ordered by distance from zero, positive first."""
        max_shift = int(round(self.max_offset_seconds / frame_duration))
        lowest = max(-max_shift, -(n_tgt - self.min_overlap_frames))
        highest = min(max_shift, n_ref - self.min_overlap_frames)
        shifts = range(lowest, highest + 1)
        return sorted(shifts, key=lambda k: (abs(k), -k))

    def align(
        self, reference: FingerprintSequence, target: FingerprintSequence
    ) -> AlignmentResult:
        """
        Finds the offset at which `target` best matches `reference`.

        Sequences that cannot overlap by at least `min_overlap_frames` within the
        search window yield a zero-offset, zero-confidence result.
        """
        self._check_compatible(reference, target)
        ref, tgt = reference.frames, target.frames
        n_ref, n_tgt = len(ref), len(tgt)

        best_shift: int | None = None
        best_mean = float("inf")
        best_distances: np.ndarray | None = None

        for k in self._candidate_shifts(n_ref, n_tgt, reference.frame_duration):
            lo = max(0, -k)
            hi = min(n_tgt, n_ref - k)
            if hi - lo < self.min_overlap_frames:
                continue
            distances = hamming_distances(ref[lo + k : hi + k], tgt[lo:hi])
            mean = float(distances.mean())
            if mean < best_mean:
                best_shift, best_mean, best_distances = k, mean, distances

        if best_shift is None:
            log.debug(
                f"No viable overlap between '{reference.source_id}' and "
                f"'{target.source_id}' ({n_ref} vs {n_tgt} frames)."
            )
            return AlignmentResult(
                reference_id=reference.source_id,
                target_id=target.source_id,
                offset=0.0,
                confidence=0.0,
                matched_frames=0,
                trusted=False,
            )

        matched = best_distances <= self.similarity_threshold_bits
        confidence = float(matched.mean())
        result = AlignmentResult(
            reference_id=reference.source_id,
            target_id=target.source_id,
            offset=round(best_shift * reference.frame_duration, 6),
            confidence=confidence,
            matched_frames=int(matched.sum()),
            trusted=confidence > self.confidence_threshold,
        )
        log.debug(
            f"Aligned '{target.source_id}' to '{reference.source_id}': "
            f"offset={result.offset:+.3f}s confidence={confidence:.2f} "
            f"mean_distance={best_mean:.2f} bits"
        )
        return result

    def resolve_offsets(
        self,
        reference: FingerprintSequence,
        targets: Sequence[FingerprintSequence],
    ) -> dict[str, AlignmentResult]:
        """
        Aligns every target against one reference, keyed by target source id.

        Results below the confidence threshold are kept but marked untrusted, so
        their applied offset is zero.
        """
        results = {}
        for target in targets:
            result = self.align(reference, target)
            if not result.trusted:
                log.warning(
                    f"[yellow]Low alignment confidence for '{target.source_id}' "
                    f"({result.confidence:.0%}); leaving it unshifted.[/yellow]"
                )
            results[target.source_id] = result
        return results
