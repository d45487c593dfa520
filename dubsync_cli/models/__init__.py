"""
Data Models Layer.

This package contains the dataclasses and Pydantic models that define the core
data structures used throughout the application: variants and segments,
fingerprints and alignment results, configuration and statistics.
"""

from .config import SyncConfig
from .fingerprint import AlignmentResult, FingerprintSequence
from .stats import AcquisitionReport, AcquisitionStats, VariantOutcome, VariantStatus
from .variant import DecryptionKey, SegmentRef, TrackKind, Variant

__all__ = [
    "AcquisitionReport",
    "AcquisitionStats",
    "AlignmentResult",
    "DecryptionKey",
    "FingerprintSequence",
    "SegmentRef",
    "SyncConfig",
    "TrackKind",
    "Variant",
    "VariantOutcome",
    "VariantStatus",
]
