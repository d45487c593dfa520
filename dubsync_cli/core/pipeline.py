"""
Runs one episode end to end: resolve, acquire, align and mux.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Sequence

from dubsync_cli.catalog.base import CatalogService
from dubsync_cli.exceptions import (
    AcquisitionCancelledError,
    AllVariantsFailedError,
    DecoderError,
    VariantFailedError,
)
from dubsync_cli.media.bandwidth import TokenBucket
from dubsync_cli.media.decoder import AudioDecoder, FFmpegDecoder
from dubsync_cli.media.fetcher import SegmentFetcher, create_client_session
from dubsync_cli.media.retry import RetryPolicy
from dubsync_cli.models.config import SyncConfig
from dubsync_cli.models.fingerprint import AlignmentResult, FingerprintSequence
from dubsync_cli.models.stats import AcquisitionReport
from dubsync_cli.models.variant import TrackKind, Variant
from dubsync_cli.mux.orchestrator import MuxOrchestrator
from dubsync_cli.sync.alignment import AlignmentEngine
from dubsync_cli.sync.fingerprint import FingerprintExtractor
from dubsync_cli.sync.reference import ReferencePolicy, policy_for_locale
from dubsync_cli.utils.formatting import format_offset

from .coordinator import DownloadCoordinator
from .session import AcquisitionSession

log = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Everything the CLI reports after a session."""

    output: Path
    report: AcquisitionReport
    reference_id: str | None = None
    alignments: dict[str, AlignmentResult] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class SyncPipeline:
    """
    Orchestrates a session for one episode and one output file.

    Audio fingerprinting starts as soon as the reference and each target are
    fully acquired, while other variants may still be downloading. The HTTP
    client session and the acquisition session are owned here, so they are
    closed on every exit path.
    """

    def __init__(
        self,
        config: SyncConfig,
        catalog: CatalogService,
        decoder: AudioDecoder | None = None,
        reference_policy: ReferencePolicy | None = None,
        extractor: FingerprintExtractor | None = None,
        session_factory=create_client_session,
        cancel_event: asyncio.Event | None = None,
    ):
        self.config = config
        self.catalog = catalog
        self.decoder = decoder or FFmpegDecoder(config.ffmpeg_path)
        self.extractor = extractor or FingerprintExtractor(
            sample_rate=self.decoder.sample_rate
        )
        self.engine = AlignmentEngine.from_config(config)
        self.session_factory = session_factory
        self.cancel_event = cancel_event or asyncio.Event()
        self._reference_policy = reference_policy
        self._warnings: list[str] = []

    def _policy_for(self, variants: Sequence[Variant]) -> ReferencePolicy:
        if self._reference_policy is not None:
            return self._reference_policy
        # Without a configured locale, align against the video's own audio.
        locale = self.config.reference_locale or next(
            (v.release for v in variants if v.kind is TrackKind.VIDEO), None
        )
        return policy_for_locale(locale)

    async def run(
        self, episode_id: str, output: Path, title: str | None = None
    ) -> PipelineResult:
        """
        Produces `output` for `episode_id`.

        Raises:
            CatalogError: The episode or its keys could not be resolved.
            SessionLockedError: Another process is working on `output`.
            AllVariantsFailedError: Nothing usable was acquired.
            AcquisitionCancelledError: The cancellation flag was set.
            MuxToolError: The container tool failed.
        """
        output = Path(output)
        self._warnings = []
        variants = await self.catalog.resolve(episode_id)
        if title is None:
            title = await self.catalog.episode_title(episode_id)
        keys = {v.id: await self.catalog.variant_key_material(v) for v in variants}
        log.info(
            f"Episode [bold]{episode_id}[/bold]: {len(variants)} variants "
            f"({', '.join(v.id for v in variants)})"
        )

        async with AcquisitionSession(
            output, variants, resume=self.config.resume
        ) as session:
            orchestrator = MuxOrchestrator(
                session.tracks_dir, self.config.mkvmerge_path
            )
            async with self.session_factory(
                max_workers=self.config.max_workers,
                request_timeout=self.config.request_timeout,
                user_agent=self.config.user_agent,
            ) as http:
                retry_policy = RetryPolicy.from_config(self.config)
                fetcher = SegmentFetcher(
                    http,
                    TokenBucket(self.config.speed_limit),
                    retry_policy=retry_policy,
                    cancel_event=self.cancel_event,
                    proxy=self.config.proxy,
                )
                coordinator = DownloadCoordinator(
                    variants,
                    session.stores,
                    fetcher,
                    keys,
                    max_workers=self.config.max_workers,
                    retry_policy=retry_policy,
                    segment_retries=self.config.segment_retries,
                    cancel_event=self.cancel_event,
                )
                alignment_task = asyncio.create_task(
                    self._align(variants, coordinator, orchestrator)
                )
                try:
                    report = await coordinator.run()
                    if report.cancelled:
                        raise AcquisitionCancelledError(
                            "Acquisition was cancelled before all variants finished."
                        )
                    reference, alignments = await alignment_task
                finally:
                    if not alignment_task.done():
                        alignment_task.cancel()
                        await asyncio.gather(alignment_task, return_exceptions=True)

            await self._mux(
                variants,
                report,
                reference,
                alignments,
                orchestrator,
                session,
                output,
                title,
            )
        return PipelineResult(
            output=output,
            report=report,
            reference_id=reference.id if reference else None,
            alignments=alignments,
            warnings=[*report.warnings, *self._warnings],
        )

    async def _mux(
        self,
        variants: Sequence[Variant],
        report: AcquisitionReport,
        reference: Variant | None,
        alignments: dict[str, AlignmentResult],
        orchestrator: MuxOrchestrator,
        session: AcquisitionSession,
        output: Path,
        title: str | None,
    ) -> None:
        completed = set(report.completed)
        usable = [v for v in variants if v.id in completed]
        video = next((v for v in usable if v.kind is TrackKind.VIDEO), None)
        audio = [v for v in usable if v.kind is TrackKind.AUDIO]
        primary = video or reference or next(iter(audio), None)
        if primary is None:
            raise AllVariantsFailedError(
                "No video or audio track was acquired; nothing to mux.", report
            )

        if video is not None and reference is not None:
            alignments = self._rebase_on_video(video, reference, audio, alignments)
        by_release = {v.release: alignments.get(v.id) for v in audio}
        others = [(v, alignments.get(v.id)) for v in audio if v is not primary]
        subtitles = [
            (v, by_release.get(v.release))
            for v in usable
            if v.kind is TrackKind.SUBTITLE
        ]
        await orchestrator.assemble(
            primary, others, subtitles, session.stores, output, title
        )

    def _rebase_on_video(
        self,
        video: Variant,
        reference: Variant,
        audio: Sequence[Variant],
        alignments: dict[str, AlignmentResult],
    ) -> dict[str, AlignmentResult]:
        """
        Re-expresses offsets measured against the reference audio relative to
        the video, whose timing is shared by the audio of the same release.
        The video itself is never delayed.
        """
        if reference.release == video.release:
            return alignments
        anchor = next(
            (
                alignments[v.id]
                for v in audio
                if v.release == video.release
                and v.id in alignments
                and alignments[v.id].trusted
            ),
            None,
        )
        if anchor is None:
            self._warn(
                f"No audio of release '{video.release}' could be aligned against "
                f"'{reference.id}'; the video timing is assumed to match it."
            )
            return alignments

        base = anchor.offset
        rebased = {
            vid: (
                replace(result, offset=result.offset - base)
                if result.trusted
                else result
            )
            for vid, result in alignments.items()
        }
        rebased[reference.id] = replace(
            anchor, target_id=reference.id, offset=-base
        )
        log.debug(
            f"Rebased offsets on the '{video.release}' video timing "
            f"({format_offset(-base)} for '{reference.id}')"
        )
        return rebased

    async def _align(
        self,
        variants: Sequence[Variant],
        coordinator: DownloadCoordinator,
        orchestrator: MuxOrchestrator,
    ) -> tuple[Variant | None, dict[str, AlignmentResult]]:
        candidates = [v for v in variants if v.kind is TrackKind.AUDIO]
        if not candidates:
            return None, {}
        policy = self._policy_for(variants)

        reference = reference_fp = None
        while candidates:
            chosen = policy.select(candidates)
            candidates.remove(chosen)
            try:
                reference_fp = await self._fingerprint(
                    chosen, coordinator, orchestrator
                )
            except VariantFailedError:
                log.warning(
                    f"[yellow]Reference candidate '{chosen.id}' is unavailable; "
                    "choosing another.[/yellow]"
                )
                continue
            if reference_fp is not None:
                reference = chosen
                break

        if reference is None:
            self._warn("No audio track could be fingerprinted; tracks are not shifted.")
            return None, {}
        log.info(f"Aligning audio tracks against [bold]{reference.id}[/bold]")

        async def fingerprint_target(variant: Variant) -> FingerprintSequence | None:
            try:
                return await self._fingerprint(variant, coordinator, orchestrator)
            except VariantFailedError:
                return None

        fingerprints = await asyncio.gather(
            *(fingerprint_target(v) for v in candidates)
        )
        targets = [fp for fp in fingerprints if fp is not None]
        alignments = await asyncio.to_thread(
            self.engine.resolve_offsets, reference_fp, targets
        )
        for target_id, result in alignments.items():
            if not result.trusted:
                self._warnings.append(
                    f"Alignment of '{target_id}' has low confidence "
                    f"({result.confidence:.0%}); it was muxed without a delay."
                )
            else:
                log.info(
                    f"'{target_id}': offset {result.offset:+.3f}s "
                    f"(confidence {result.confidence:.0%})"
                )
        return reference, alignments

    async def _fingerprint(
        self,
        variant: Variant,
        coordinator: DownloadCoordinator,
        orchestrator: MuxOrchestrator,
    ) -> FingerprintSequence | None:
        store = await coordinator.wait_ready(variant.id)
        path = await orchestrator.export_track(variant, store)
        try:
            return await self.extractor.extract_file(path, self.decoder, variant.id)
        except DecoderError as e:
            self._warn(f"Could not decode '{variant.id}' for alignment: {e}")
            return None

    def _warn(self, message: str) -> None:
        log.warning(f"[yellow]{message}[/yellow]")
        self._warnings.append(message)
