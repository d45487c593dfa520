"""
Typed description of an mkvmerge invocation.

Orchestration code only ever deals with `MuxInput` and `MuxCommand` objects;
they are turned into an argument vector at the process boundary by `to_args()`.
"""

from dataclasses import dataclass, field
from pathlib import Path

from dubsync_cli.models.variant import TrackKind

# Every input file carries exactly one stream, so its track ID is always 0.
_TRACK_ID = 0


@dataclass(frozen=True)
class MuxInput:
    """One input file and the per-stream options applied to it."""

    path: Path
    kind: TrackKind
    language: str
    delay_ms: int = 0
    track_name: str | None = None
    default: bool = False

    def to_args(self) -> list[str]:
        args = ["--language", f"{_TRACK_ID}:{self.language}"]
        if self.track_name:
            args += ["--track-name", f"{_TRACK_ID}:{self.track_name}"]
        if self.delay_ms:
            args += ["--sync", f"{_TRACK_ID}:{self.delay_ms}"]
        flag = "yes" if self.default else "no"
        args += ["--default-track-flag", f"{_TRACK_ID}:{flag}"]
        args.append(str(self.path))
        return args


@dataclass
class MuxCommand:
    """An ordered list of inputs muxed into a single Matroska output."""

    tool: str
    output: Path
    inputs: list[MuxInput] = field(default_factory=list)
    title: str | None = None

    def to_args(self) -> list[str]:
        if not self.inputs:
            raise ValueError("A mux command needs at least one input.")
        args = [self.tool, "--output", str(self.output)]
        if self.title:
            args += ["--title", self.title]
        for mux_input in self.inputs:
            args += mux_input.to_args()
        return args
