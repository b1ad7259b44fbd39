"""Retry and rate limiting for calls to external services."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from .errors import TransientServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Exponential backoff settings.

    Attempt n (0-based) that fails with a retryable error waits
    `delay * backoff_multiplier ** n` seconds, capped at `max_delay`.
    """

    max_retries: int = 3
    delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 60.0

    def wait_time(self, attempt: int) -> float:
        return min(self.delay * (self.backoff_multiplier ** attempt), self.max_delay)


def retry_with_backoff(
    func: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    exceptions: Tuple[Type[BaseException], ...] = (TransientServiceError,),
    sleep: Callable[[float], None] = time.sleep,
    description: str = "call",
) -> T:
    """
    Retry a function with exponential backoff.

    Args:
        func: Function to call.
        policy: Backoff settings. Defaults to RetryPolicy().
        exceptions: Exception types that trigger a retry. Anything else
            propagates immediately.
        sleep: Sleep function, replaceable in tests.
        description: Used in log messages.

    Returns:
        Result of the function call.

    Raises:
        The last exception if all attempts fail.
    """
    policy = policy or RetryPolicy()
    last_exception = None

    for attempt in range(policy.max_retries + 1):
        try:
            return func()
        except exceptions as e:
            last_exception = e
            if attempt < policy.max_retries:
                wait_time = policy.wait_time(attempt)
                logger.warning(
                    f"{description}: attempt {attempt + 1}/{policy.max_retries + 1} "
                    f"failed: {e}. Retrying in {wait_time:.2f}s..."
                )
                sleep(wait_time)
            else:
                logger.error(
                    f"{description}: all {policy.max_retries + 1} attempts failed. "
                    f"Last error: {e}"
                )

    raise last_exception


class RateLimiter:
    """
    Spaces out requests so that no more than `requests_per_minute` start in
    any minute. Shared between worker threads.
    """

    def __init__(
        self,
        requests_per_minute: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_minute <= 0:
            raise ValueError(
                f"requests_per_minute must be positive, got {requests_per_minute}"
            )
        self.interval = 60.0 / requests_per_minute
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = None

    def acquire(self):
        """Blocks until the caller may start a request."""
        with self._lock:
            now = self._clock()
            if self._next_slot is None or self._next_slot <= now:
                slot = now
            else:
                slot = self._next_slot
            self._next_slot = slot + self.interval
        wait = slot - now
        if wait > 0:
            logger.debug(f"Rate limit: waiting {wait:.2f}s")
            self._sleep(wait)


class ServiceCaller:
    """
    Wraps calls to an external service with rate limiting and retries.

    Each attempt (including retries) waits for a rate limiter slot.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self.rate_limiter = rate_limiter
        self._sleep = sleep

    def call(self, func: Callable[[], T], description: str = "call") -> T:
        def attempt():
            if self.rate_limiter is not None:
                self.rate_limiter.acquire()
            return func()

        return retry_with_backoff(
            attempt, policy=self.policy, sleep=self._sleep, description=description
        )
