"""
External process execution with a hard wall-clock ceiling.

Used for every ffmpeg/ffprobe call. When the ceiling is hit the process
is killed and any partial output file is removed.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from reel_relay.utils.timeouts import Outcome, with_timeout

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """
    Result of run_process().

    Attributes:
        outcome: success (process exited), timeout or failure (could not start)
        returncode: Exit code when the process exited
        stdout: Captured standard output
        stderr: Captured standard error
        error: Startup error (e.g. binary not found)
    """

    outcome: Outcome
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """True when the process ran to completion with exit code 0."""
        return self.outcome == Outcome.SUCCESS and self.returncode == 0

    def describe(self) -> str:
        if self.outcome == Outcome.TIMEOUT:
            return "timed out"
        if self.outcome == Outcome.FAILURE:
            return f"failed to start: {self.error}"
        if self.returncode != 0:
            tail = self.stderr.strip()[-500:]
            return f"exit code {self.returncode}: {tail}"
        return "ok"


def remove_partial(path: Path | None) -> None:
    """Delete a partially written output file, ignoring a missing file."""
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove partial output {path.name}: {e}")


async def run_process(
    cmd: list[str],
    timeout: float,
    output_path: Path | None = None,
) -> ProcessResult:
    """
    Run an external command without blocking the event loop.

    Args:
        cmd: Command and arguments
        timeout: Wall-clock ceiling in seconds
        output_path: File the command writes; deleted on timeout or non-zero exit

    Returns:
        ProcessResult (never raises for process failures)
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error(f"Cannot start {cmd[0]}: {e}")
        return ProcessResult(Outcome.FAILURE, error=e)

    async def kill() -> None:
        if process.returncode is None:
            process.kill()
            await process.wait()
        remove_partial(output_path)

    try:
        result = await with_timeout(process.communicate(), timeout, on_timeout=kill, on_failure=kill)
    except asyncio.CancelledError:
        await kill()
        raise

    if result.timed_out:
        logger.warning(f"{Path(cmd[0]).name} killed after {timeout:.0f}s")
        return ProcessResult(Outcome.TIMEOUT)
    if not result.ok:
        return ProcessResult(Outcome.FAILURE, error=result.error)

    stdout, stderr = result.value
    completed = ProcessResult(
        Outcome.SUCCESS,
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if completed.returncode != 0:
        remove_partial(output_path)
    return completed
