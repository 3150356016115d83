"""
Retry engine for per-account publish attempts.

Wraps a fallible coroutine factory with bounded attempts, capped
exponential backoff and a classifier that stops immediately on failures
that cannot succeed on retry (bad credentials, rejected media, permanent
quota, unreachable host).

Example:
    result = await with_retry(
        lambda: publisher.publish(account, request),
        policy=RetryPolicy(max_attempts=3, base_delay=15, max_delay=120),
        on_retry=reporter.retry_notice(account.name),
        context=f"instagram account {account.name}",
    )
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from reel_relay.services.clients.base import ClientConnectionError, ClientResponseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Lower-cased substrings of platform error messages that will not change on retry
NON_RETRYABLE_MESSAGES = (
    "invalid media",
    "unsupported format",
    "media type not supported",
    "quota exceeded",
    "api limit exceeded",
    "invalid access token",
    "access token has expired",
    "credentials not configured",
    "file too large",
)

NON_RETRYABLE_STATUS = frozenset({401, 403})


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry parameters for one call site.

    Delay before attempt k+1 is min(base_delay * backoff_multiplier^(k-1), max_delay).

    Attributes:
        max_attempts: Total attempts including the first
        base_delay: Delay after the first failure, in seconds
        max_delay: Upper bound on any single delay, in seconds
        backoff_multiplier: Growth factor between consecutive delays
    """

    max_attempts: int = 3
    base_delay: float = 15.0
    max_delay: float = 120.0
    backoff_multiplier: float = 2.0

    def delay_for(self, failed_attempts: int) -> float:
        """Delay after `failed_attempts` consecutive failures."""
        return min(
            self.base_delay * self.backoff_multiplier ** (failed_attempts - 1),
            self.max_delay,
        )


PUBLISH_RETRY_POLICY = RetryPolicy()

OnRetry = Callable[[int, float, BaseException], Awaitable[None]]
Classifier = Callable[[BaseException], bool]


def is_non_retryable(error: BaseException) -> bool:
    """
    Classify a failure as permanent.

    Non-retryable: HTTP 401/403, invalid or unsupported media, permanent
    quota exhaustion, invalid or expired tokens, unreachable hosts.
    Everything else, including 429 and 5xx, is retried.
    """
    if isinstance(error, ClientResponseError) and error.status_code in NON_RETRYABLE_STATUS:
        return True

    if isinstance(error, ClientConnectionError) and error.unreachable:
        return True

    message = str(error)
    if isinstance(error, ClientResponseError) and error.platform_message:
        message = f"{error.platform_message} {message}"
    message = message.lower()
    return any(marker in message for marker in NON_RETRYABLE_MESSAGES)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = PUBLISH_RETRY_POLICY,
    classify_non_retryable: Classifier = is_non_retryable,
    on_retry: OnRetry | None = None,
    context: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an operation with bounded retries.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Attempt and backoff limits
        classify_non_retryable: Returns True to stop retrying immediately
        on_retry: Awaited before each backoff with (failed_attempt, delay, error)
        context: Label for logs and the note attached to the final error
        sleep: Backoff sleep function (injectable for tests)

    Returns:
        Result of the first successful attempt

    Raises:
        Exception: The last attempt's error, with an attempt-count note attached
    """
    attempts = 0
    last_error: BaseException | None = None

    async def attempt_once() -> T:
        nonlocal attempts, last_error
        attempts += 1
        logger.info(f"Attempt {attempts}/{policy.max_attempts} for {context}")
        try:
            return await operation()
        except Exception as e:
            last_error = e
            logger.warning(f"Attempt {attempts} failed for {context}: {e}")
            if classify_non_retryable(e):
                logger.error(f"Non-retryable error for {context}, stopping attempts")
            raise

    async def backoff(delay: float) -> None:
        logger.info(f"Retrying {context} in {delay:.0f}s")
        if on_retry is not None:
            await on_retry(attempts, delay, last_error)
        await sleep(delay)

    retrying = AsyncRetrying(
        sleep=backoff,
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay,
            exp_base=policy.backoff_multiplier,
            max=policy.max_delay,
        ),
        retry=retry_if_exception(
            lambda e: isinstance(e, Exception) and not classify_non_retryable(e)
        ),
        reraise=True,
    )

    try:
        result = await retrying(attempt_once)
    except Exception as e:
        e.add_note(f"{context}: gave up after {attempts}/{policy.max_attempts} attempt(s)")
        raise

    if attempts > 1:
        logger.info(f"{context} succeeded on attempt {attempts}")
    return result
