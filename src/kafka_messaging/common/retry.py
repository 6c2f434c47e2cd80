"""
Exponential backoff retry for broker operations.

One policy drives every retried call in the package: producer connect,
producer send and consumer connect. Cancellation of the calling task is
never retried or wrapped: asyncio.CancelledError escapes immediately from
either the operation or the backoff sleep.

Usage:
    >>> await retry(
    ...     lambda: session.write(message),
    ...     max_elapsed=10.0,
    ...     initial_interval=0.1,
    ...     max_attempts=6,
    ...     operation_name="send",
    ... )
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from kafka_messaging.common.exceptions import (
    ErrorCategory,
    RetryExhaustedError,
    classify_exception,
)
from kafka_messaging.common.logging import log_exception, log_with_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Retry-count buckets applied to KafkaOptions.max_reconnect_retry
RETRY_BUCKETS = ((5, 5), (10, 10))
MAX_RETRY_BUCKET = 20


@dataclass(frozen=True)
class ExponentialBackoff:
    """
    Exponential backoff with cap and jitter.

    Delay before retry n (1-based) is
    ``initial_interval * multiplier ** (n - 1)``, capped at ``max_interval``,
    plus up to ``jitter`` of itself in random extra.

    Attributes:
        initial_interval: Delay before the first retry, in seconds
        max_elapsed: Wall-clock budget in seconds (<= 0 = no budget)
        max_attempts: Total attempts including the first (<= 0 = unlimited,
            1 = no retry)
        multiplier: Growth factor between consecutive delays
        max_interval: Upper bound for a single delay, in seconds
        jitter: Random extra as a fraction of the delay (0 disables)
    """

    initial_interval: float
    max_elapsed: float = 0.0
    max_attempts: int = 0
    multiplier: float = 2.0
    max_interval: float = 30.0
    jitter: float = 0.1

    def next_delay(self, attempt: int) -> float:
        """Delay in seconds after the given (1-based) failed attempt."""
        delay = self.initial_interval * (self.multiplier ** max(attempt - 1, 0))
        delay = min(delay, self.max_interval)
        if self.jitter > 0:
            delay += delay * self.jitter * random.random()
        return delay

    def done(self, attempt: int, elapsed: float) -> bool:
        """Whether to stop after ``attempt`` attempts and ``elapsed`` seconds."""
        if self.max_attempts > 0 and attempt >= self.max_attempts:
            return True
        if self.max_elapsed > 0 and elapsed >= self.max_elapsed:
            return True
        return False


def attempts_for_reconnect_retry(max_reconnect_retry: int) -> int:
    """
    Translate KafkaOptions.max_reconnect_retry into a total attempt count.

    <= 0 means unlimited (returns 0), 1 means a single attempt. Larger values
    are rounded up to a bucketed retry cap of 5, 10 or 20 retries so a typo
    can't produce an unbounded retry storm; the initial attempt is added on top.

    Examples:
        >>> attempts_for_reconnect_retry(0)
        0
        >>> attempts_for_reconnect_retry(1)
        1
        >>> attempts_for_reconnect_retry(3)
        6
        >>> attempts_for_reconnect_retry(500)
        21
    """
    if max_reconnect_retry <= 0:
        return 0
    if max_reconnect_retry == 1:
        return 1
    for upper, retries in RETRY_BUCKETS:
        if max_reconnect_retry <= upper:
            return retries + 1
    return MAX_RETRY_BUCKET + 1


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_elapsed: float,
    initial_interval: float,
    max_attempts: int,
    *,
    policy: Optional[ExponentialBackoff] = None,
    operation_name: str = "operation",
    log: Optional[logging.Logger] = None,
    **log_fields,
) -> T:
    """
    Await ``operation()`` until it succeeds or the backoff policy gives up.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_elapsed: Wall-clock budget in seconds (<= 0 = unbounded)
        initial_interval: First backoff delay in seconds
        max_attempts: Total attempts (<= 0 = unlimited, 1 = no retry)
        policy: Override the policy built from the three limits above
        operation_name: Name used in logs and in RetryExhaustedError
        log: Logger for attempt events (defaults to this module's logger)
        **log_fields: Extra structured fields for every attempt log

    Returns:
        Whatever the operation returns

    Raises:
        RetryExhaustedError: Attempts or elapsed budget used up; the last
            failure is attached as ``cause``
        asyncio.CancelledError: The calling task was cancelled
        Exception: Errors classified PERMANENT or AUTH are re-raised as-is
    """
    policy = policy or ExponentialBackoff(
        initial_interval=initial_interval,
        max_elapsed=max_elapsed,
        max_attempts=max_attempts,
    )
    log = log or logger
    start = time.monotonic()
    attempt = 0

    while True:
        attempt += 1
        try:
            result = await operation()
        except Exception as e:
            category = classify_exception(e)
            if category in (ErrorCategory.PERMANENT, ErrorCategory.AUTH):
                raise

            elapsed = time.monotonic() - start
            if policy.done(attempt, elapsed):
                log_exception(
                    log,
                    e,
                    f"{operation_name} failed, giving up",
                    include_traceback=False,
                    attempt=attempt,
                    elapsed_seconds=round(elapsed, 3),
                    **log_fields,
                )
                raise RetryExhaustedError(operation_name, attempt, elapsed, cause=e) from e

            delay = policy.next_delay(attempt)
            if policy.max_elapsed > 0:
                # Never sleep past the budget; one last attempt runs at the deadline
                delay = min(delay, max(policy.max_elapsed - elapsed, 0.0))

            log_exception(
                log,
                e,
                f"{operation_name} failed, retrying",
                level=logging.WARNING,
                include_traceback=False,
                attempt=attempt,
                delay_seconds=round(delay, 3),
                **log_fields,
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 1:
            log_with_context(
                log,
                logging.INFO,
                f"{operation_name} succeeded after retry",
                attempt=attempt,
                elapsed_seconds=round(time.monotonic() - start, 3),
                **log_fields,
            )
        return result


__all__ = [
    "ExponentialBackoff",
    "attempts_for_reconnect_retry",
    "retry",
]
