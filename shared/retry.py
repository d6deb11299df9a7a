"""
Retry for connecting to backing services at startup.

The database and the cache may come up after the service does; their
``start()`` coroutines are retried with capped exponential backoff before
the failure is reported to the lifespan handler.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type

from shared.logging import get_logger


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt count and backoff shape."""
    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    jitter: float = 0.1

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        delay = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        spread = delay * self.jitter
        return max(0.0, delay + random.uniform(-spread, spread))


STARTUP_RETRY = RetryPolicy()


class RetryError(Exception):
    """Raised when every attempt failed. Carries the last underlying error."""

    def __init__(self, operation: str, last_exception: Exception, attempts: int):
        super().__init__(f"{operation} failed after {attempts} attempts")
        self.operation = operation
        self.last_exception = last_exception
        self.attempts = attempts


def retry_on_exception(exceptions: Tuple[Type[Exception], ...] = (Exception,),
                       config: RetryPolicy = STARTUP_RETRY) -> Callable:
    """Retry an async callable on ``exceptions`` according to ``config``."""

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        logger = get_logger(f"commerce.retry.{func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= config.attempts:
                        logger.error("Giving up", attempts=attempt, error=str(e))
                        raise RetryError(func.__name__, e, attempt) from e

                    delay = config.delay(attempt)
                    logger.warning("Attempt failed, retrying", attempt=attempt, delay=round(delay, 3),
                                   error=str(e))
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
