"""
Policies for choosing the audio variant every other track is aligned to.
"""

import logging
from collections.abc import Sequence
from typing import Protocol

from dubsync_cli.models.variant import TrackKind, Variant

log = logging.getLogger(__name__)


class ReferencePolicy(Protocol):
    def select(self, variants: Sequence[Variant]) -> Variant: ...


def _audio_variants(variants: Sequence[Variant]) -> list[Variant]:
    audio = [v for v in variants if v.kind is TrackKind.AUDIO]
    if not audio:
        raise ValueError("No audio variant available to align against.")
    return audio


class LongestAudioReference:
    """Picks the audio variant with the longest expected duration."""

    def select(self, variants: Sequence[Variant]) -> Variant:
        audio = _audio_variants(variants)
        # max() keeps the first of equally long tracks, i.e. the catalog's order
        return max(audio, key=lambda v: v.duration)


class PreferLocaleReference:
    """
    Picks the audio variant of a preferred locale (usually the original
    language), falling back to another policy when it is not available.
    """

    def __init__(self, locale: str, fallback: ReferencePolicy | None = None):
        self.locale = locale
        self.fallback = fallback or LongestAudioReference()

    def select(self, variants: Sequence[Variant]) -> Variant:
        for variant in _audio_variants(variants):
            wanted = self.locale.lower()
            if wanted in (variant.locale.lower(), variant.release.lower()):
                return variant
        chosen = self.fallback.select(variants)
        log.info(
            f"[yellow]No {self.locale} audio available; aligning against "
            f"{chosen.locale} instead.[/yellow]"
        )
        return chosen


def policy_for_locale(locale: str | None) -> ReferencePolicy:
    """Builds the configured policy: a preferred locale, or the longest track."""
    if locale:
        return PreferLocaleReference(locale)
    return LongestAudioReference()
