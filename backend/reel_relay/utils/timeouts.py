"""
Timeout combinator used by every external call that can hang.

Wraps an awaitable in a race against a timer and reports the outcome as a
value instead of an exception, so call sites decide their own fallback:

    result = await with_timeout(probe(path), 30, on_timeout=kill_probe)
    if result.ok:
        use(result.value)
    elif result.timed_out:
        ...
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CleanupCallback = Callable[[], Awaitable[None] | None]


class Outcome(str, Enum):
    """How a timed operation ended."""
    SUCCESS = "success"
    TIMEOUT = "timeout"
    FAILURE = "failure"


@dataclass
class TimedResult(Generic[T]):
    """Result of with_timeout().

    Attributes:
        outcome: success, timeout or failure
        value: Operation result (success only)
        error: Raised exception (failure only)
    """

    outcome: Outcome
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @property
    def timed_out(self) -> bool:
        return self.outcome == Outcome.TIMEOUT

    def describe(self) -> str:
        """Short human-readable reason for logs."""
        if self.ok:
            return "ok"
        if self.timed_out:
            return "timeout"
        return f"{type(self.error).__name__}: {self.error}"


async def _run_cleanup(cleanup: CleanupCallback | None) -> None:
    if cleanup is None:
        return
    try:
        result = cleanup()
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        # Cleanup must never mask the original outcome
        logger.warning(f"Timeout cleanup failed: {e}")


async def with_timeout(
    operation: Awaitable[T],
    seconds: float,
    on_timeout: CleanupCallback | None = None,
    on_failure: CleanupCallback | None = None,
) -> TimedResult[T]:
    """
    Await an operation with a hard wall-clock ceiling.

    Args:
        operation: Awaitable to run
        seconds: Timeout in seconds
        on_timeout: Cleanup for the sub-resource when the timer wins
            (kill process, close stream, delete partial file)
        on_failure: Cleanup when the operation raises

    Returns:
        TimedResult distinguishing success, timeout and failure

    Note:
        asyncio.CancelledError from an outer cancellation is propagated.
    """
    try:
        value = await asyncio.wait_for(operation, timeout=seconds)
        return TimedResult(Outcome.SUCCESS, value=value)
    except asyncio.TimeoutError:
        await _run_cleanup(on_timeout)
        return TimedResult(Outcome.TIMEOUT)
    except Exception as e:
        await _run_cleanup(on_failure)
        return TimedResult(Outcome.FAILURE, error=e)


async def race(operation: Awaitable[T], seconds: float, what: str) -> T:
    """
    Await with a timeout and raise TimeoutError naming the operation.

    For call sites whose contract is to raise rather than fall back.
    """
    result: TimedResult[Any] = await with_timeout(operation, seconds)
    if result.ok:
        return result.value
    if result.timed_out:
        raise TimeoutError(f"{what} timed out after {seconds:.0f}s")
    raise result.error
