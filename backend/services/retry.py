"""
Timeout + exponential backoff executor for network-bound steps.

Used around page navigation/extraction, proxy provider calls and session
acquisition. The executor itself does not classify errors: callers either
skip wrapping a call or pass the exception types that must not be retried.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .clock import Clock, SYSTEM_CLOCK

logger = logging.getLogger(__name__)

T = TypeVar("T")

BASE_DELAY_MS = 2000
MAX_DELAY_MS = 30000


class OperationTimeout(Exception):
    """An attempt did not settle before its timeout."""
    pass


def backoff_delay_ms(attempt: int) -> int:
    """Delay after the given zero-based failed attempt: min(2000 * 2^attempt, 30000)."""
    return min(BASE_DELAY_MS * (2 ** attempt), MAX_DELAY_MS)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    timeout_ms: int = 30000,
    clock: Clock = SYSTEM_CLOCK,
    no_retry: Tuple[Type[BaseException], ...] = (),
    label: str = "operation",
    log: Optional[logging.Logger] = logger,
) -> T:
    """
    Run `operation` up to `max_retries` times.

    Each attempt is bounded by `timeout_ms`; a timeout counts as a failure.
    Between attempts waits backoff_delay_ms(attempt). No wait follows the
    final attempt.

    Args:
        operation: Zero-arg callable returning a fresh awaitable per attempt
        max_retries: Total number of attempts
        timeout_ms: Per-attempt timeout in milliseconds
        clock: Clock used for the backoff waits
        no_retry: Exception types re-raised immediately without retrying
        label: Name used in log lines
        log: Logger for per-retry lines (None to stay quiet)

    Returns:
        The first successful result

    Raises:
        The last observed error once all attempts are used up
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    last_error: Optional[BaseException] = None

    for attempt in range(max_retries):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout_ms / 1000)
        except no_retry:
            raise
        except asyncio.TimeoutError:
            last_error = OperationTimeout(f"{label} timed out after {timeout_ms}ms")
        except Exception as e:
            last_error = e

        if attempt + 1 >= max_retries:
            break

        wait_ms = backoff_delay_ms(attempt)
        if log:
            log.warning(
                f"{label}: attempt {attempt + 1}/{max_retries} failed ({last_error}) - "
                f"retrying in {wait_ms}ms"
            )
        await clock.sleep(wait_ms / 1000)

    if log:
        log.warning(f"{label}: giving up after {max_retries} attempts ({last_error})")
    raise last_error
