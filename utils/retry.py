"""Bounded retry with exponential backoff for external calls."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .errors import ExternalServiceError

logger = logging.getLogger(__name__)

RETRYABLE_MARKERS = ("rate limit", "ratelimit", "timeout", "timed out", "too many requests", "429")


def is_retryable_error(error: BaseException) -> bool:
    """Default classifier: rate-limit and timeout class errors only."""
    if isinstance(error, ExternalServiceError):
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


class RetryPolicy:
    """
    Retry an async callable with exponential backoff.

    Delay before attempt n+1 is base_delay * 2**(n-1), capped at max_delay.
    Errors the classifier rejects are raised immediately; after the last
    attempt the most recent error is raised unchanged.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        is_retryable: Optional[Callable[[BaseException], bool]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.is_retryable = is_retryable or is_retryable_error
        self._sleep = sleep or asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def run(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await fn(*args, **kwargs), retrying retryable failures."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn(*args, **kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt >= self.max_attempts or not self.is_retryable(e):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} of "
                    f"{getattr(fn, '__name__', 'call')} failed ({e}); retrying in {delay:.1f}s"
                )
                await self._sleep(delay)


NO_RETRY = RetryPolicy(max_attempts=1)
