from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence


@dataclass(slots=True)
class ToolResult:
    """Captured outcome of one external tool invocation."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_tail(self, limit: int = 500) -> str:
        return self.stderr.strip()[-limit:]


class ToolError(RuntimeError):
    """Raised when a tool cannot be launched or does not finish in time."""


ToolRunner = Callable[[Sequence[str], float], Awaitable[ToolResult]]


async def run_tool(argv: Sequence[str], timeout_s: float) -> ToolResult:
    """Run ``argv`` without a shell and capture its output.

    The child is killed if the timeout elapses or the awaiting task is
    cancelled, so no orphaned ffmpeg/ffprobe processes outlive a request.

    Args:
        argv: The command and its arguments.
        timeout_s: Wall-clock limit for the invocation.

    Returns:
        The captured result, whatever the exit status.
    """
    command = tuple(str(part) for part in argv)
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ToolError(f"could not start {command[0]}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        await _terminate(proc)
        raise ToolError(f"{command[0]} timed out after {timeout_s:g}s") from exc
    except asyncio.CancelledError:
        await _terminate(proc)
        raise

    return ToolResult(
        argv=command,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()


__all__ = ["ToolResult", "ToolError", "ToolRunner", "run_tool"]
