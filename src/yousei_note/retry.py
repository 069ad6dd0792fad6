#!/usr/bin/env python3
"""Retry and timeout helpers shared by every storage backend."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import wraps
from typing import Callable, Optional, TypeVar

from .constants import NETWORK_SETTINGS
from .errors import StorageTimeoutError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_MAX_RETRIES = NETWORK_SETTINGS['MAX_RETRY_COUNT']
DEFAULT_TIMEOUT_MS = NETWORK_SETTINGS['DEFAULT_TIMEOUT']


def backoff_delay(attempt: int) -> int:
    """Delay in ms before retry number ``attempt + 1``.

    Exponential from 1s, capped at 5s: 1000, 2000, 4000, 5000, 5000, ...
    """
    return min(NETWORK_SETTINGS['RETRY_DELAY'] * (2 ** attempt),
               NETWORK_SETTINGS['MAX_RETRY_DELAY'])


def call_with_retry(operation: Callable[[], T],
                    max_retries: int = DEFAULT_MAX_RETRIES,
                    should_retry: Optional[Callable[[Exception], bool]] = None,
                    sleep: Optional[Callable[[float], None]] = None,
                    label: str = 'operation') -> T:
    """Call ``operation`` and retry it with exponential backoff.

    Args:
        operation: Zero-argument callable to run
        max_retries: Additional attempts after the first one
        should_retry: Predicate deciding whether an error is retried;
            errors it rejects are raised immediately
        sleep: Sleep function taking seconds (injectable for tests)
        label: Name used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        Exception: The last error once retries are exhausted
    """
    sleep = sleep or time.sleep
    attempts = max_retries + 1
    for attempt in range(attempts):
        try:
            return operation()
        except Exception as e:
            if should_retry is not None and not should_retry(e):
                raise
            if attempt >= max_retries:
                logger.error(f"{label} failed after {attempts} attempts: {e}")
                raise
            delay = backoff_delay(attempt)
            logger.warning(
                f"{label} failed (attempt {attempt + 1}/{attempts}), "
                f"retrying in {delay}ms: {e}"
            )
            sleep(delay / 1000)
    raise ValueError(f"max_retries must be >= 0, got: {max_retries}")


def retry_on_failure(max_retries: int = DEFAULT_MAX_RETRIES,
                     should_retry: Optional[Callable[[Exception], bool]] = None):
    """Decorator form of :func:`call_with_retry`.

    Args:
        max_retries: Additional attempts after the first one
        should_retry: Optional predicate selecting retryable errors
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return call_with_retry(
                lambda: func(*args, **kwargs),
                max_retries=max_retries,
                should_retry=should_retry,
                label=func.__name__,
            )
        return wrapper
    return decorator


def call_with_timeout(operation: Callable[[], T],
                      timeout_ms: int = DEFAULT_TIMEOUT_MS) -> T:
    """Race ``operation`` against a timer.

    The operation runs on a worker thread. When the timer wins the caller
    gets :class:`StorageTimeoutError`; the worker is abandoned, so side
    effects already in flight may still complete.

    Args:
        operation: Zero-argument callable to run
        timeout_ms: Maximum wait in milliseconds

    Raises:
        StorageTimeoutError: If the operation did not finish in time
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='yousei-op')
    future = executor.submit(operation)
    try:
        return future.result(timeout=timeout_ms / 1000)
    except FutureTimeoutError:
        future.cancel()
        raise StorageTimeoutError(timeout_ms) from None
    finally:
        executor.shutdown(wait=False)


def is_retryable(error: Exception) -> bool:
    """Retry timeouts and connection-class transport failures only."""
    if isinstance(error, StorageTimeoutError):
        return True
    return isinstance(error, TransportError) and error.retryable
