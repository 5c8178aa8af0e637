"""
Retry and backoff policies for backend operations

Provides:
- BackoffStrategy implementations (none, fixed, exponential with jitter)
  that workloads plug in separately for the timeout path and the error path
- retry_with_backoff decorator for operations that should be retried on a
  typed set of transient exceptions

Usage:
    from utils.retry import ExponentialBackoff, retry_with_backoff

    @retry_with_backoff(max_retries=3, retryable_exceptions=(BackendTransportError,))
    def create_topic():
        client.create_topic("orders")
"""

import logging
import random
import time
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class BackoffStrategy:
    """
    Computes how long to wait before the next attempt.

    ``attempt`` is 1 for the first retry after a failure.
    """

    def delay(self, attempt: int) -> float:
        raise NotImplementedError

    def wait(self, attempt: int, sleep: Callable[[float], Any] = time.sleep) -> float:
        """Sleep for the computed delay and return it."""
        seconds = self.delay(attempt)
        if seconds > 0:
            sleep(seconds)
        return seconds


class NoBackoff(BackoffStrategy):
    """Retry immediately."""

    def delay(self, attempt: int) -> float:
        return 0.0

    def __repr__(self) -> str:
        return "NoBackoff()"


class FixedBackoff(BackoffStrategy):
    """Wait the same amount of time before every retry."""

    def __init__(self, seconds: float = 1.0):
        if seconds < 0:
            raise ValueError("Backoff delay must be non-negative")
        self.seconds = seconds

    def delay(self, attempt: int) -> float:
        return self.seconds

    def __repr__(self) -> str:
        return f"FixedBackoff({self.seconds})"


class ExponentialBackoff(BackoffStrategy):
    """
    base_delay * exponential_base ** (attempt - 1), capped at max_delay,
    with optional +/-25% jitter to prevent thundering herd.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def delay(self, attempt: int) -> float:
        delay = min(
            self.base_delay * (self.exponential_base ** max(attempt - 1, 0)),
            self.max_delay,
        )
        if self.jitter:
            jitter_amount = delay * 0.25
            delay = delay + random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)
        return delay

    def __repr__(self) -> str:
        return (
            f"ExponentialBackoff(base_delay={self.base_delay}, "
            f"max_delay={self.max_delay}, jitter={self.jitter})"
        )


_BACKOFF_NAMES = {
    "none": lambda arg: NoBackoff(),
    "fixed": lambda arg: FixedBackoff(float(arg) if arg else 1.0),
    "exponential": lambda arg: ExponentialBackoff(base_delay=float(arg) if arg else 1.0),
}


def parse_backoff(spec: str) -> BackoffStrategy:
    """
    Build a strategy from a short text form.

    Accepted forms: ``none``, ``fixed``, ``fixed:0.5``, ``exponential``,
    ``exponential:0.2`` (the argument is the base delay in seconds).
    """
    name, _, arg = spec.strip().lower().partition(":")
    if name not in _BACKOFF_NAMES:
        raise ValueError(
            f"Unknown backoff strategy '{spec}'. "
            f"Expected one of: {', '.join(sorted(_BACKOFF_NAMES))}"
        )
    return _BACKOFF_NAMES[name](arg)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    strategy: Optional[BackoffStrategy] = None,
):
    """
    Decorator that retries a function with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        exponential_base: Base for exponential backoff (default: 2.0)
        jitter: Add random jitter to prevent thundering herd (default: True)
        retryable_exceptions: Tuple of exception types to retry (default: all exceptions)
        on_retry: Callback function(attempt, exception, delay) called on each retry
        strategy: Explicit BackoffStrategy; overrides the delay arguments

    Returns:
        Decorated function with retry logic
    """
    backoff = strategy or ExponentialBackoff(
        base_delay=base_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
    )

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            func_name = getattr(func, '__name__', 'function')

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except Exception as e:
                    if retryable_exceptions and not isinstance(e, retryable_exceptions):
                        logger.error(
                            f"Non-retryable exception in {func_name}: {type(e).__name__}: {e}"
                        )
                        raise

                    if attempt == max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func_name}: "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    delay = backoff.delay(attempt + 1)

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_retries} failed for {func_name}: "
                        f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                    )

                    if on_retry:
                        try:
                            on_retry(attempt + 1, e, delay)
                        except Exception as callback_error:
                            logger.error(f"Error in retry callback: {callback_error}")

                    time.sleep(delay)

            raise RuntimeError(f"Unexpected error in retry logic for {func_name}")

        return wrapper
    return decorator
