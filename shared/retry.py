"""
Retry mechanism for resilient operations.

Delays grow linearly with the attempt number and are capped, with no
jitter: attempt ``n`` waits ``min(n * base_delay, max_delay)`` before
attempt ``n + 1``.
"""

import asyncio
import functools
from typing import Any, Optional, Callable, Awaitable

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.2,
                 max_delay: float = 2.0):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after failed attempt ``attempt`` (1-based)."""
        return max(0.0, min(self.base_delay * attempt, self.max_delay))


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""
    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def retry_on_exception(exceptions: tuple = (Exception,),
                       config: Optional[RetryConfig] = None) -> Callable:
    """Retry an async function on the given exceptions.

    Makes exactly ``config.max_attempts`` attempts, then raises
    ``RetryError`` carrying the last exception. Exceptions outside
    ``exceptions`` propagate on the first attempt.
    """

    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            logger = get_logger(f"retry.{func.__name__}")
            last_exception: Exception = Exception("max_attempts < 1")

            for attempt in range(1, config.max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                    if attempt > 1:
                        logger.info("Retry succeeded", attempt=attempt, function=func.__name__)
                    return result

                except exceptions as e:
                    last_exception = e
                    if attempt == config.max_attempts:
                        break

                    delay = config.delay_after(attempt)
                    logger.warning(
                        "Retry attempt failed, waiting before next attempt",
                        attempt=attempt,
                        delay=delay,
                        function=func.__name__,
                        error=str(e)
                    )
                    await asyncio.sleep(delay)

            logger.warning(
                "All retry attempts exhausted",
                max_attempts=config.max_attempts,
                function=func.__name__,
                error=str(last_exception)
            )
            raise RetryError(
                f"Function {func.__name__} failed after {config.max_attempts} attempts",
                last_exception=last_exception,
                attempts=config.max_attempts
            ) from last_exception

        return wrapper

    return decorator
