"""
Adapter around the external audio decoder (ffmpeg) that yields raw PCM samples.
"""

import asyncio
import logging
from pathlib import Path
from typing import Protocol

import numpy as np

from dubsync_cli.exceptions import DecoderError

log = logging.getLogger(__name__)

FINGERPRINT_SAMPLE_RATE = 11025


class AudioDecoder(Protocol):
    """Anything that turns an audio track file into mono float PCM."""

    sample_rate: int

    async def decode(self, path: Path) -> np.ndarray: ...


class FFmpegDecoder:
    """
    Decodes the first audio stream of a file into mono 16-bit PCM via ffmpeg
    and returns it as float32 samples in [-1, 1).
    """

    def __init__(
        self, ffmpeg_path: str = "ffmpeg", sample_rate: int = FINGERPRINT_SAMPLE_RATE
    ):
        self.ffmpeg_path = ffmpeg_path
        self.sample_rate = sample_rate

    def build_args(self, path: Path) -> list[str]:
        return [
            self.ffmpeg_path,
            "-nostdin",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            str(path),
            "-map",
            "0:a:0",
            "-ac",
            "1",
            "-ar",
            str(self.sample_rate),
            "-f",
            "s16le",
            "-",
        ]

    async def decode(self, path: Path) -> np.ndarray:
        args = self.build_args(path)
        log.debug(f"Decoding audio: {' '.join(args)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise DecoderError(
                f"Decoder '{self.ffmpeg_path}' was not found. Is ffmpeg installed?"
            ) from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            raise DecoderError(
                f"ffmpeg exited with code {process.returncode} while decoding "
                f"'{path.name}': {stderr.decode(errors='replace').strip()}"
            )
        return pcm16_to_float(stdout)


def pcm16_to_float(raw: bytes) -> np.ndarray:
    """Converts little-endian signed 16-bit PCM bytes to float32 samples."""
    usable = len(raw) - (len(raw) % 2)
    samples = np.frombuffer(raw[:usable], dtype="<i2")
    return samples.astype(np.float32) / 32768.0
