"""Retry and polling helpers"""
import logging
import time
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

from ops.errors import RetryError, WaitTimeout

logger = logging.getLogger(__name__)


def log_operation(description: str):
    """Decorator for timing and logging a named operational step."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger.info(f"Starting: {description}")
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                duration = time.time() - start_time
                logger.info(f"Completed: {description} in {duration:.2f}s")
                return result
            except Exception as e:
                duration = time.time() - start_time
                logger.error(f"Failed: {description} after {duration:.2f}s - {str(e)}")
                raise
        return wrapper
    return decorator


def retry_call(func: Callable[[], Any], attempts: int = 3, delay: float = 10.0,
               backoff: float = 1.0, exceptions: Tuple[Type[BaseException], ...] = (Exception,),
               description: Optional[str] = None, sleep: Callable[[float], None] = time.sleep) -> Any:
    """
    Call func until it succeeds

    Args:
        func: Zero-argument callable
        attempts: Total attempts, at least 1
        delay: Seconds before the second attempt
        backoff: Multiplier applied to the delay after each failure
        exceptions: Exception types that trigger a retry
        description: Name used in log lines
        sleep: Sleep function, replaceable in tests

    Returns:
        Whatever func returns

    Raises:
        RetryError: after the last failed attempt
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    description = description or getattr(func, "__name__", "operation")
    wait = delay
    for attempt in range(1, attempts + 1):
        try:
            logger.info(f"{description}: attempt {attempt}/{attempts}")
            return func()
        except exceptions as e:
            if attempt == attempts:
                raise RetryError(description, attempts, e) from e
            logger.warning(f"{description}: attempt {attempt} failed ({e}), retrying in {wait:.0f}s")
            sleep(wait)
            wait *= backoff


def wait_until(predicate: Callable[[], Any], timeout: float, interval: float = 10.0,
               description: str = "condition", clock: Callable[[], float] = time.monotonic,
               sleep: Callable[[float], None] = time.sleep) -> Any:
    """
    Poll predicate until it returns something truthy

    Returns:
        The first truthy value

    Raises:
        WaitTimeout: when the deadline passes first
    """
    deadline = clock() + timeout
    while True:
        result = predicate()
        if result:
            return result
        if clock() >= deadline:
            raise WaitTimeout(f"Timed out after {timeout:.0f}s waiting for {description}")
        logger.info(f"Waiting for {description}...")
        sleep(interval)
