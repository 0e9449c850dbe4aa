from __future__ import annotations

import argparse
import asyncio
import shutil
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .core.config import get_settings
from .media import (
    FFmpegFastStartTranscoder,
    FFprobeMediaProbe,
    ProbeFailure,
    TranscodeFailure,
    build_object_key,
    classify_aspect_ratio,
)

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI.

    Returns:
        The argument parser.
    """
    parser = argparse.ArgumentParser(description="Tubely ingest developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe dependencies")

    subparsers = parser.add_subparsers(dest="command")

    probe_parser = subparsers.add_parser("probe", help="Run ffprobe and print geometry, aspect category and a sample key")
    probe_parser.add_argument("--file", required=True, help="Path to the source media file")
    probe_parser.set_defaults(func=_cmd_probe)

    faststart_parser = subparsers.add_parser("faststart", help="Remux a file so its index precedes the media data")
    faststart_parser.add_argument("--file", required=True, help="Path to the source media file")
    faststart_parser.set_defaults(func=_cmd_faststart)
    return parser


def _cmd_probe(args: argparse.Namespace) -> None:
    """Run ffprobe and print the classification.

    Args:
        args: The command-line arguments.
    """
    media_path = _existing_file(args.file)
    settings = get_settings()
    probe = FFprobeMediaProbe(binary=settings.ffprobe_binary, timeout_s=settings.probe_timeout_s)
    try:
        geometry = asyncio.run(probe.probe(media_path))
    except ProbeFailure as exc:
        console.print(f"[red]ffprobe failed:[/] {exc}")
        sys.exit(3)

    category = classify_aspect_ratio(geometry.width, geometry.height)
    console.print_json(
        data={
            "file": str(media_path),
            "width": geometry.width,
            "height": geometry.height,
            "aspect_ratio": category.ratio_tag,
            "category": category.value,
            "sample_key": build_object_key(
                category,
                media_path.name,
                default_extension=settings.default_video_extension,
            ),
        }
    )


def _cmd_faststart(args: argparse.Namespace) -> None:
    """Write ``<file>.processing`` with the moov atom moved to the front.

    Args:
        args: The command-line arguments.
    """
    media_path = _existing_file(args.file)
    settings = get_settings()
    transcoder = FFmpegFastStartTranscoder(binary=settings.ffmpeg_binary, timeout_s=settings.transcode_timeout_s)
    try:
        output = asyncio.run(transcoder.transcode(media_path))
    except TranscodeFailure as exc:
        console.print(f"[red]ffmpeg failed:[/] {exc}")
        sys.exit(3)
    console.print(f"[green]Fast-start copy written to {output}[/]")


def _existing_file(raw: str) -> Path:
    media_path = Path(raw).expanduser().resolve()
    if not media_path.is_file():
        console.print(f"[red]File not found: {media_path}[/]")
        sys.exit(2)
    return media_path


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    settings = get_settings()
    results = {
        "ffmpeg": shutil.which(settings.ffmpeg_binary) is not None,
        "ffprobe": shutil.which(settings.ffprobe_binary) is not None,
    }

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Install ffmpeg (which ships ffprobe).[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
