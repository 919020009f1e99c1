"""
Retry helpers with exponential backoff for table store calls

Provides resilient retry logic for throttled and transient failures with:
- Exponential backoff (base 2.0)
- Server-provided Retry-After delays when available
- Jitter to prevent thundering herd
- Callback support for metrics integration

Usage:
    from src.utils.retry import call_with_backoff

    call_with_backoff(store.create_records, table, rows,
                      max_retries=3, retryable_exceptions=(ThrottledError,))
"""

import time
import random
import logging
from typing import Callable, Any, Optional, Type, Tuple

logger = logging.getLogger(__name__)


def compute_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retry_after: Optional[float] = None
) -> float:
    """
    Compute the wait before the next attempt.

    Args:
        attempt: Zero-based attempt number that just failed
        base_delay: Initial delay in seconds
        max_delay: Upper bound for the computed delay
        exponential_base: Base for exponential backoff
        jitter: Add up to 25% random jitter
        retry_after: Delay requested by the server; used as-is when given

    Returns:
        Delay in seconds
    """
    if retry_after is not None and retry_after >= 0:
        return float(retry_after)

    delay = min(base_delay * (exponential_base ** attempt), max_delay)

    if jitter:
        jitter_amount = delay * 0.25
        delay = delay + random.uniform(-jitter_amount, jitter_amount)
        delay = max(0.1, delay)

    return delay


def call_with_backoff(
    func: Callable[..., Any],
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Optional[Callable[[float], None]] = None,
    **kwargs
) -> Any:
    """
    Call a function, retrying retryable failures with exponential backoff.

    Exceptions carrying a ``retry_after`` attribute (e.g. ThrottledError)
    wait exactly that long instead of the computed backoff.

    Args:
        func: Callable to invoke
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Add random jitter to computed delays
        retryable_exceptions: Exception types to retry
        on_retry: Callback function(attempt, exception, delay) called on each retry
        sleep: Sleep function, replaceable in tests

    Returns:
        Result of ``func``

    Raises:
        The last exception once retries are exhausted, or any
        non-retryable exception immediately
    """
    func_name = getattr(func, '__name__', 'function')

    for attempt in range(max_retries + 1):
        try:
            return func(*args, **kwargs)

        except retryable_exceptions as e:
            if attempt == max_retries:
                logger.error(
                    f"Max retries ({max_retries}) exceeded for {func_name}: "
                    f"{type(e).__name__}: {e}"
                )
                raise

            delay = compute_delay(
                attempt,
                base_delay=base_delay,
                max_delay=max_delay,
                jitter=jitter,
                retry_after=getattr(e, "retry_after", None)
            )

            logger.warning(
                f"Attempt {attempt + 1}/{max_retries} failed for {func_name}: "
                f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
            )

            if on_retry:
                try:
                    on_retry(attempt + 1, e, delay)
                except Exception as callback_error:
                    logger.error(f"Error in retry callback: {callback_error}")

            (sleep or time.sleep)(delay)

    raise RuntimeError(f"Unexpected error in retry logic for {func_name}")

