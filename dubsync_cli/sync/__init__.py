"""
Synchronization Layer.

Turns decoded audio into fingerprints and estimates the offsets that bring
independently released audio tracks into sync with a reference track.
"""

from .alignment import AlignmentEngine
from .fingerprint import FingerprintExtractor
from .reference import (
    LongestAudioReference,
    PreferLocaleReference,
    ReferencePolicy,
    policy_for_locale,
)

__all__ = [
    "AlignmentEngine",
    "FingerprintExtractor",
    "LongestAudioReference",
    "PreferLocaleReference",
    "ReferencePolicy",
    "policy_for_locale",
]
