"""Tests for mux command construction and the mkvmerge orchestrator."""

import asyncio
from pathlib import Path

import pytest

from dubsync_cli.exceptions import MuxToolError
from dubsync_cli.models.fingerprint import AlignmentResult
from dubsync_cli.models.variant import TrackKind
from dubsync_cli.mux.command import MuxCommand, MuxInput
from dubsync_cli.mux.orchestrator import MuxOrchestrator, partial_path_for

from .fakes import read_mux_args, write_mux_tool


def alignment(target_id, offset, trusted=True):
    return AlignmentResult(
        reference_id="audio-ja-JP",
        target_id=target_id,
        offset=offset,
        confidence=0.9 if trusted else 0.2,
        matched_frames=100,
        trusted=trusted,
    )


class TestCommand:
    def test_input_arguments(self):
        mux_input = MuxInput(
            path=Path("/w/audio-en-US.ts"),
            kind=TrackKind.AUDIO,
            language="en-US",
            delay_ms=2400,
            track_name="English",
        )
        assert mux_input.to_args() == [
            "--language",
            "0:en-US",
            "--track-name",
            "0:English",
            "--sync",
            "0:2400",
            "--default-track-flag",
            "0:no",
            "/w/audio-en-US.ts",
        ]

    def test_zero_delay_omits_sync(self):
        args = MuxInput(Path("v.ts"), TrackKind.VIDEO, "ja-JP", default=True).to_args()
        assert "--sync" not in args
        assert args[-3:] == ["--default-track-flag", "0:yes", "v.ts"]

    def test_command_needs_inputs(self):
        with pytest.raises(ValueError):
            MuxCommand(tool="mkvmerge", output=Path("out.mkv")).to_args()


class TestBuildCommand:
    def test_delays_defaults_and_subtitles(self, tmp_path, make_variant):
        video = make_variant("ja-JP", TrackKind.VIDEO)
        ja = make_variant("ja-JP")
        en = make_variant("en-US")
        en_subs = make_variant("en-US", TrackKind.SUBTITLE)
        en_alignment = alignment("audio-en-US", -1.25)
        orchestrator = MuxOrchestrator(tmp_path, tool="mkvmerge")

        command = orchestrator.build_command(
            video,
            [(ja, None), (en, en_alignment)],
            [(en_subs, en_alignment)],
            tmp_path / "episode.mkv",
            title="Episode 1",
        )
        args = command.to_args()

        assert args[:5] == [
            "mkvmerge",
            "--output",
            str(tmp_path / "episode.mkv.partial"),
            "--title",
            "Episode 1",
        ]
        by_file = {i.path.name: i for i in command.inputs}
        assert by_file["video-ja-JP.ts"].default
        assert by_file["audio-ja-JP.ts"].default
        assert not by_file["audio-en-US.ts"].default
        assert by_file["audio-en-US.ts"].delay_ms == -1250
        assert by_file["subtitle-en-US.ass"].delay_ms == -1250
        assert not by_file["subtitle-en-US.ass"].default

    def test_untrusted_alignment_is_not_applied(self, tmp_path, make_variant):
        ja, en = make_variant("ja-JP"), make_variant("en-US")
        orchestrator = MuxOrchestrator(tmp_path)

        command = orchestrator.build_command(
            ja, [(en, alignment("audio-en-US", 3.0, trusted=False))], [], tmp_path / "o"
        )

        assert command.inputs[1].delay_ms == 0


@pytest.fixture
def complete_tracks(make_variant, open_store):
    ja, en = make_variant("ja-JP", segments=2), make_variant("en-US", segments=2)
    stores = {v.id: open_store(v) for v in (ja, en)}

    async def fill():
        for variant in (ja, en):
            for index in range(2):
                await stores[variant.id].write(index, f"{variant.id}{index}".encode())

    asyncio.run(fill())
    return ja, en, stores


class TestAssemble:
    def test_successful_run_renames_partial_output(self, tmp_path, complete_tracks):
        ja, en, stores = complete_tracks
        tool, args_file = write_mux_tool(tmp_path)
        output = tmp_path / "episode.mkv"
        orchestrator = MuxOrchestrator(tmp_path / "work", tool=str(tool))

        asyncio.run(
            orchestrator.assemble(
                ja, [(en, alignment("audio-en-US", 2.4))], [], stores, output
            )
        )

        assert output.read_bytes() == b"matroska"
        assert not partial_path_for(output).exists()
        args = read_mux_args(args_file)
        assert "0:2400" in args
        exported = (tmp_path / "work" / "audio-en-US.ts").read_bytes()
        assert exported == b"audio-en-US0audio-en-US1"

    def test_exit_code_one_is_accepted(self, tmp_path, complete_tracks):
        ja, en, stores = complete_tracks
        tool, _ = write_mux_tool(
            tmp_path, exit_code=1, message="Warning: odd timestamps"
        )
        output = tmp_path / "episode.mkv"
        orchestrator = MuxOrchestrator(tmp_path / "work", tool=str(tool))

        asyncio.run(orchestrator.assemble(ja, [(en, None)], [], stores, output))

        assert output.exists()

    def test_tool_failure_removes_partial_output(self, tmp_path, complete_tracks):
        ja, en, stores = complete_tracks
        tool, _ = write_mux_tool(tmp_path, exit_code=2, message="Error: bad input")
        output = tmp_path / "episode.mkv"
        orchestrator = MuxOrchestrator(tmp_path / "work", tool=str(tool))

        with pytest.raises(MuxToolError) as exc_info:
            asyncio.run(orchestrator.assemble(ja, [(en, None)], [], stores, output))

        assert exc_info.value.exit_code == 2
        assert "bad input" in exc_info.value.stderr
        assert not output.exists()
        assert not partial_path_for(output).exists()

    def test_empty_output_is_a_failure(self, tmp_path, complete_tracks):
        ja, en, stores = complete_tracks
        tool, _ = write_mux_tool(tmp_path, write_output=False)
        output = tmp_path / "episode.mkv"
        orchestrator = MuxOrchestrator(tmp_path / "work", tool=str(tool))

        with pytest.raises(MuxToolError):
            asyncio.run(orchestrator.assemble(ja, [(en, None)], [], stores, output))
        assert not output.exists()

    def test_missing_tool(self, tmp_path, complete_tracks):
        ja, en, stores = complete_tracks
        orchestrator = MuxOrchestrator(
            tmp_path / "work", tool=str(tmp_path / "no-such-mkvmerge")
        )

        with pytest.raises(MuxToolError) as exc_info:
            asyncio.run(
                orchestrator.assemble(ja, [], [], stores, tmp_path / "episode.mkv")
            )
        assert exc_info.value.exit_code == 127
