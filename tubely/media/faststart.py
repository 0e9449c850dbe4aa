from __future__ import annotations

from pathlib import Path
from typing import List, Protocol

from .process import ToolError, ToolRunner, run_tool

PROCESSING_SUFFIX = ".processing"


class TranscodeFailure(RuntimeError):
    """ffmpeg could not produce the fast-start copy."""


class FastStartTranscoder(Protocol):
    async def transcode(self, source: Path) -> Path: ...


def processing_path_for(source: Path) -> Path:
    return source.with_name(source.name + PROCESSING_SUFFIX)


class FFmpegFastStartTranscoder:
    """Remux with stream copy and ``-movflags faststart`` so the moov atom leads the file."""

    def __init__(self, *, binary: str = "ffmpeg", timeout_s: float = 600.0, runner: ToolRunner = run_tool):
        self.binary = binary
        self.timeout_s = timeout_s
        self.runner = runner

    def command(self, source: Path, output: Path) -> List[str]:
        return [
            self.binary,
            "-nostdin",
            "-v",
            "error",
            "-y",
            "-i",
            str(source),
            "-c",
            "copy",
            "-movflags",
            "faststart",
            "-f",
            "mp4",
            str(output),
        ]

    async def transcode(self, source: Path) -> Path:
        output = processing_path_for(source)
        try:
            result = await self.runner(self.command(source, output), self.timeout_s)
        except ToolError as exc:
            raise TranscodeFailure(str(exc)) from exc
        if not result.ok:
            raise TranscodeFailure(f"ffmpeg exited with {result.returncode}: {result.stderr_tail()}")
        if not output.exists():
            raise TranscodeFailure(f"ffmpeg reported success but {output} is missing")
        return output


__all__ = [
    "TranscodeFailure",
    "FastStartTranscoder",
    "FFmpegFastStartTranscoder",
    "processing_path_for",
    "PROCESSING_SUFFIX",
]
