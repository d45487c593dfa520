"""
Turns completed, aligned tracks into a single Matroska file via mkvmerge.
"""

import asyncio
import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path

from dubsync_cli.exceptions import MuxToolError
from dubsync_cli.models.fingerprint import AlignmentResult
from dubsync_cli.models.variant import TrackKind, Variant
from dubsync_cli.storage.segment_store import SegmentStore

from .command import MuxCommand, MuxInput

log = logging.getLogger(__name__)

# mkvmerge: 0 = success, 1 = success with warnings, 2 = error
_ACCEPTED_EXIT_CODES = (0, 1)

AlignedTrack = tuple[Variant, AlignmentResult | None]


def partial_path_for(output: Path) -> Path:
    return output.with_name(output.name + ".partial")


class MuxOrchestrator:
    """
    Exports each variant's reassembled stream into the work directory, builds
    the mkvmerge command with per-track delays and language tags, and runs it.

    The tool writes into `<output>.partial`; only a successful run with a
    non-empty result is renamed onto the final output path.
    """

    def __init__(self, work_dir: Path, tool: str = "mkvmerge"):
        self.work_dir = work_dir
        self.tool = tool

    def track_path(self, variant: Variant) -> Path:
        return self.work_dir / f"{variant.id}.{variant.extension}"

    def build_command(
        self,
        primary: Variant,
        others: Sequence[AlignedTrack],
        subtitles: Sequence[AlignedTrack],
        output: Path,
        title: str | None = None,
    ) -> MuxCommand:
        """Translates variants and alignment results into a typed mux command."""
        command = MuxCommand(
            tool=self.tool, output=partial_path_for(output), title=title
        )
        command.inputs.append(
            MuxInput(
                path=self.track_path(primary),
                kind=primary.kind,
                language=primary.locale,
                track_name=primary.title,
                default=True,
            )
        )

        default_audio_set = primary.kind is TrackKind.AUDIO
        for variant, alignment in others:
            is_default = variant.kind is TrackKind.AUDIO and not default_audio_set
            default_audio_set = default_audio_set or is_default
            command.inputs.append(self._input_for(variant, alignment, is_default))

        for variant, alignment in subtitles:
            command.inputs.append(self._input_for(variant, alignment, False))
        return command

    def _input_for(
        self, variant: Variant, alignment: AlignmentResult | None, default: bool
    ) -> MuxInput:
        delay_ms = alignment.applied_offset_ms if alignment else 0
        return MuxInput(
            path=self.track_path(variant),
            kind=variant.kind,
            language=variant.locale,
            delay_ms=delay_ms,
            track_name=variant.title,
            default=default,
        )

    async def export_tracks(
        self, variants: Sequence[Variant], stores: Mapping[str, SegmentStore]
    ) -> None:
        """Writes every variant's reassembled bytes to its temp file in parallel."""
        self.work_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.gather(*(self.export_track(v, stores[v.id]) for v in variants))

    async def export_track(self, variant: Variant, store: SegmentStore) -> Path:
        path = self.track_path(variant)
        if not self._is_exported(variant, store):
            self.work_dir.mkdir(parents=True, exist_ok=True)
            await store.export(path)
        return path

    def _is_exported(self, variant: Variant, store: SegmentStore) -> bool:
        path = self.track_path(variant)
        return path.is_file() and path.stat().st_size == store.total_bytes

    async def assemble(
        self,
        primary: Variant,
        others: Sequence[AlignedTrack],
        subtitles: Sequence[AlignedTrack],
        stores: Mapping[str, SegmentStore],
        output: Path,
        title: str | None = None,
    ) -> Path:
        """
        Produces the final output file.

        Raises:
            IncompleteTrackError: A store handed in is not complete.
            MuxToolError: The tool failed or produced no usable output.
        """
        variants = [primary, *(v for v, _ in others), *(v for v, _ in subtitles)]
        await self.export_tracks(variants, stores)
        command = self.build_command(primary, others, subtitles, output, title)
        await self.run(command, output)
        return output

    async def run(self, command: MuxCommand, output: Path) -> None:
        """Executes the command and moves its verified result onto `output`."""
        args = command.to_args()
        partial = command.output
        partial.unlink(missing_ok=True)
        log.debug(f"Running mux tool: {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise MuxToolError(
                127, f"Mux tool '{self.tool}' was not found. Is MKVToolNix installed?"
            ) from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            partial.unlink(missing_ok=True)
            raise

        # mkvmerge reports most problems on stdout
        diagnostics = "\n".join(
            part.decode(errors="replace").strip()
            for part in (stderr, stdout)
            if part and part.strip()
        )
        exit_code = process.returncode

        if exit_code not in _ACCEPTED_EXIT_CODES:
            partial.unlink(missing_ok=True)
            raise MuxToolError(exit_code, diagnostics)
        if not partial.is_file() or partial.stat().st_size == 0:
            partial.unlink(missing_ok=True)
            raise MuxToolError(
                exit_code,
                f"{diagnostics}\nMux tool reported success but wrote no output.",
            )
        if exit_code == 1:
            log.warning(
                f"[yellow]Mux tool finished with warnings:[/yellow] {diagnostics}"
            )

        await asyncio.to_thread(os.replace, partial, output)
        log.info(
            f"[green]✓ Muxed {len(command.inputs)} tracks into {output.name}[/green]"
        )
