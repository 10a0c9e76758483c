"""
Retry mechanism for resilient operations.
"""

import asyncio
import time
from typing import Any, Optional, Callable, Awaitable

from shared.logging import get_logger


class RetryConfig:
    """Bounded attempts with a constant pause between them."""

    def __init__(self, max_attempts: int = 3, delay: float = 1.0):
        self.max_attempts = max_attempts
        self.delay = delay


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""
    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def retry_on_exception(exceptions: tuple = (Exception,),
                      config: Optional[RetryConfig] = None) -> Callable:
    """Decorator for retrying async functions on exceptions."""

    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        async def wrapper(*args, **kwargs) -> Any:
            logger = get_logger(f"retry.{func.__name__}")

            for attempt in range(1, config.max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                    if attempt > 1:
                        logger.info("Retry succeeded", attempt=attempt, function=func.__name__)
                    return result

                except exceptions as e:
                    if attempt == config.max_attempts:
                        _log_exhausted(logger, func, config, e)
                        raise RetryError(
                            f"Function {func.__name__} failed after {config.max_attempts} attempts",
                            last_exception=e,
                            attempts=config.max_attempts
                        ) from e

                    delay = config.delay
                    _log_waiting(logger, func, attempt, delay, e)
                    await asyncio.sleep(delay)

            raise RetryError(
                f"Function {func.__name__} was never attempted",
                last_exception=Exception("No attempts configured"),
                attempts=0
            )

        return wrapper

    return decorator


def retry_call(func: Callable[..., Any],
               *args,
               exceptions: tuple = (Exception,),
               config: Optional[RetryConfig] = None,
               sleep: Callable[[float], None] = time.sleep,
               **kwargs) -> Any:
    """Call a blocking function, retrying on the given exceptions."""
    if config is None:
        config = RetryConfig()

    logger = get_logger(f"retry.{getattr(func, '__name__', 'call')}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = func(*args, **kwargs)
            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt, function=getattr(func, "__name__", "call"))
            return result

        except exceptions as e:
            if attempt == config.max_attempts:
                _log_exhausted(logger, func, config, e)
                raise RetryError(
                    f"Function {getattr(func, '__name__', 'call')} failed after {config.max_attempts} attempts",
                    last_exception=e,
                    attempts=config.max_attempts
                ) from e

            delay = config.delay
            _log_waiting(logger, func, attempt, delay, e)
            sleep(delay)

    raise RetryError(
        f"Function {getattr(func, '__name__', 'call')} was never attempted",
        last_exception=Exception("No attempts configured"),
        attempts=0
    )


def _log_exhausted(logger, func: Callable, config: RetryConfig, error: Exception) -> None:
    logger.error(
        "All retry attempts exhausted",
        max_attempts=config.max_attempts,
        function=getattr(func, "__name__", "call"),
        error=str(error)
    )


def _log_waiting(logger, func: Callable, attempt: int, delay: float, error: Exception) -> None:
    logger.warning(
        "Retry attempt failed, waiting before next attempt",
        attempt=attempt,
        delay=delay,
        function=getattr(func, "__name__", "call"),
        error=str(error)
    )
