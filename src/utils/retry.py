"""
Async retry helpers with bounded attempts and configurable backoff

Provides resilient retry logic for transient remote failures with:
- Bounded total attempts (the first call counts as attempt 1)
- Linear, exponential or constant backoff
- Optional jitter to prevent thundering herd
- Exception filtering (non-retryable errors fail immediately)
- Callback support for metrics integration

Usage:
    from utils.retry import is_retryable_exception, retry_async

    task_id = await retry_async(
        lambda: service.submit(records),
        max_attempts=3,
        base_delay=2.0,
        retry_if=is_retryable_exception,
    )
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)

BACKOFF_STRATEGIES = ("linear", "exponential", "constant")


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    backoff: str = "linear",
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = False,
) -> float:
    """
    Delay to wait after a failed attempt

    Args:
        attempt: Number of the attempt that just failed (1-based)
        base_delay: Base delay in seconds
        backoff: "linear" (base * attempt), "exponential"
                 (base * exponential_base ** (attempt - 1)) or "constant"
        exponential_base: Growth factor for exponential backoff
        max_delay: Upper bound for the delay
        jitter: Add +/-25% random jitter

    Returns:
        Delay in seconds
    """
    if backoff == "linear":
        delay = base_delay * attempt
    elif backoff == "exponential":
        delay = base_delay * (exponential_base ** (attempt - 1))
    elif backoff == "constant":
        delay = base_delay
    else:
        raise ValueError(
            f"Unknown backoff strategy {backoff!r}, expected one of {BACKOFF_STRATEGIES}"
        )

    delay = min(delay, max_delay)

    if jitter and delay > 0:
        jitter_amount = delay * 0.25
        delay = delay + random.uniform(-jitter_amount, jitter_amount)
        delay = max(0.0, delay)

    return delay


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    backoff: str = "linear",
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = False,
    retryable_exceptions: Optional[Tuple[Type[BaseException], ...]] = None,
    retry_if: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    operation_name: Optional[str] = None,
) -> Any:
    """
    Await an operation, retrying failures up to max_attempts total attempts

    Args:
        operation: Zero-argument callable returning an awaitable
        max_attempts: Total number of attempts including the first (default: 3)
        base_delay: Base delay in seconds between attempts (default: 1.0)
        backoff: Backoff strategy, see compute_backoff_delay (default: linear)
        exponential_base: Base for exponential backoff (default: 2.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        jitter: Add random jitter to delays (default: False)
        retryable_exceptions: Exception types to retry (default: all exceptions)
        retry_if: Predicate deciding whether an exception is retried, applied
                  after retryable_exceptions (e.g. is_retryable_exception)
        on_retry: Callback(attempt, exception, delay) called before each wait
        sleep: Awaitable sleep used between attempts (default: asyncio.sleep)
        operation_name: Name used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        The last exception once attempts are exhausted, or any non-retryable
        exception immediately. asyncio.CancelledError is never retried.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    name = operation_name or getattr(operation, "__name__", "operation")
    sleep = sleep or asyncio.sleep

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()

        except Exception as e:
            if (retryable_exceptions and not isinstance(e, retryable_exceptions)) or (
                retry_if is not None and not retry_if(e)
            ):
                logger.error(
                    f"Non-retryable exception in {name}: {type(e).__name__}: {e}"
                )
                raise

            if attempt == max_attempts:
                logger.error(
                    f"Max attempts ({max_attempts}) exhausted for {name}: "
                    f"{type(e).__name__}: {e}"
                )
                raise

            delay = compute_backoff_delay(
                attempt,
                base_delay,
                backoff=backoff,
                exponential_base=exponential_base,
                max_delay=max_delay,
                jitter=jitter,
            )

            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed for {name}: "
                f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
            )

            if on_retry:
                try:
                    on_retry(attempt, e, delay)
                except Exception as callback_error:
                    logger.error(f"Error in retry callback: {callback_error}")

            await sleep(delay)

    raise RuntimeError(f"Unexpected exit from retry loop for {name}")


def is_retryable_exception(exception: BaseException) -> bool:
    """
    Determine if an exception represents a transient failure

    Errors carrying a ``retryable`` attribute decide for themselves; otherwise
    built-in connection and timeout errors are treated as transient.

    Args:
        exception: The exception to check

    Returns:
        True if the exception is retryable, False otherwise
    """
    flag = getattr(exception, "retryable", None)
    if flag is not None:
        return bool(flag)

    return isinstance(exception, (ConnectionError, TimeoutError))
