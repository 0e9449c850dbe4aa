from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .process import ToolError, ToolRunner, run_tool


class ProbeFailure(RuntimeError):
    """ffprobe could not report usable stream geometry."""


@dataclass(frozen=True, slots=True)
class StreamGeometry:
    width: int
    height: int


class MediaProbe(Protocol):
    async def probe(self, path: Path) -> StreamGeometry: ...


def parse_stream_geometry(raw: str | bytes | Dict[str, Any]) -> StreamGeometry:
    """Extract the first stream's frame size from ffprobe JSON output.

    Args:
        raw: ffprobe's ``-print_format json -show_streams`` stdout, or the
            already decoded document.

    Returns:
        The width and height of the first stream.
    """
    if isinstance(raw, (str, bytes)):
        try:
            document = json.loads(raw)
        except ValueError as exc:
            raise ProbeFailure(f"malformed ffprobe output: {exc}") from exc
    else:
        document = raw

    if not isinstance(document, dict):
        raise ProbeFailure("ffprobe output is not a JSON object")

    streams = document.get("streams")
    if not isinstance(streams, list) or not streams:
        raise ProbeFailure("ffprobe reported no streams")

    first = streams[0]
    if not isinstance(first, dict):
        raise ProbeFailure("ffprobe stream entry is not an object")

    width = _int_or_none(first.get("width"))
    height = _int_or_none(first.get("height"))
    # Audio-first containers report no geometry; a zero height cannot be classified.
    if width is None or height is None or height <= 0 or width < 0:
        raise ProbeFailure(f"first stream has no usable geometry (width={width}, height={height})")
    return StreamGeometry(width=width, height=height)


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, "N/A", ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class FFprobeMediaProbe:
    """MediaProbe backed by the ffprobe binary."""

    def __init__(self, *, binary: str = "ffprobe", timeout_s: float = 30.0, runner: ToolRunner = run_tool):
        self.binary = binary
        self.timeout_s = timeout_s
        self.runner = runner

    def command(self, path: Path) -> List[str]:
        return [
            self.binary,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_streams",
            str(path),
        ]

    async def probe(self, path: Path) -> StreamGeometry:
        try:
            result = await self.runner(self.command(path), self.timeout_s)
        except ToolError as exc:
            raise ProbeFailure(str(exc)) from exc
        if not result.ok:
            raise ProbeFailure(f"ffprobe exited with {result.returncode}: {result.stderr_tail()}")
        return parse_stream_geometry(result.stdout)


__all__ = ["ProbeFailure", "StreamGeometry", "MediaProbe", "FFprobeMediaProbe", "parse_stream_geometry"]
