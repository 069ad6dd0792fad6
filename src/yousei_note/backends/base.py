"""Abstract base class for key/value storage backends."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ..constants import NETWORK_SETTINGS
from ..models import Record
from ..retry import call_with_retry, call_with_timeout
from ..validators import validate_data

logger = logging.getLogger(__name__)

T = TypeVar('T')


class KeyValueBackend(ABC):
    """Abstract base class for storage backends.

    Every backend offers the same contract:
    - ``init`` connects and probes the backend, returning False on failure
    - ``save``/``load``/``delete`` work on one key
    - ``list`` returns records whose key starts with a prefix

    A missing key is reported as None from ``load``, never as an exception.
    """

    storage_type = 'base'

    def __init__(self, timeout_ms: Optional[int] = None, max_retries: Optional[int] = None):
        """Initialize backend.

        Args:
            timeout_ms: Per-operation timeout (default 10000 ms)
            max_retries: Retries after a failed attempt (default 3)
        """
        self.initialized = False
        self.timeout_ms = timeout_ms if timeout_ms is not None else NETWORK_SETTINGS['DEFAULT_TIMEOUT']
        self.max_retries = max_retries if max_retries is not None else NETWORK_SETTINGS['MAX_RETRY_COUNT']
        # Replaced in tests to avoid real waits
        self.sleep: Callable[[float], None] = time.sleep

    @abstractmethod
    def init(self, *args, **kwargs) -> bool:
        """Connect to the backend and run a connection test.

        Returns:
            True if the backend is ready for use
        """
        pass

    @abstractmethod
    def save(self, key: str, data: Any) -> Any:
        """Write or overwrite ``key``.

        Raises:
            ValidationError: If data is None or not JSON serializable
        """
        pass

    @abstractmethod
    def load(self, key: str) -> Any:
        """Return the value stored under ``key``, or None if absent."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``.

        Returns:
            True if a record was removed
        """
        pass

    @abstractmethod
    def list(self, prefix: str = '') -> List[Record]:
        """Return records whose key starts with ``prefix`` (all if empty)."""
        pass

    def is_initialized(self) -> bool:
        return self.initialized

    def get_storage_type(self) -> str:
        return self.storage_type

    def test_connection(self) -> Dict[str, Any]:
        """Probe the backend.

        Returns:
            Dict with ``success`` and an ``error`` or ``message``
        """
        return {'success': True, 'message': f'{self.storage_type} connection test passed'}

    def with_retry(self, operation: Callable[[], T], max_retries: Optional[int] = None,
                   should_retry: Optional[Callable[[Exception], bool]] = None) -> T:
        """Run ``operation`` with exponential backoff (see :func:`call_with_retry`)."""
        return call_with_retry(
            operation,
            max_retries=self.max_retries if max_retries is None else max_retries,
            should_retry=should_retry,
            sleep=self.sleep,
            label=f'{self.storage_type} operation',
        )

    def with_timeout(self, operation: Callable[[], T], timeout_ms: Optional[int] = None) -> T:
        """Run ``operation`` raced against ``timeout_ms`` (see :func:`call_with_timeout`)."""
        return call_with_timeout(operation, self.timeout_ms if timeout_ms is None else timeout_ms)

    @staticmethod
    def validate_data(data: Any) -> None:
        validate_data(data)

    @staticmethod
    def generate_key(prefix: Optional[str], id: Optional[str], suffix: Optional[str] = '') -> str:
        """Join non-empty parts with '.' to form a storage key."""
        return '.'.join(part for part in (prefix, id, suffix) if part)

    def log_operation(self, operation: str, key: str, success: bool,
                      error: Optional[Any] = None) -> None:
        """Log the outcome of a storage operation."""
        if success:
            logger.info(f"{self.storage_type} {operation} successful for key: {key}")
        else:
            logger.error(f"{self.storage_type} {operation} failed for key: {key} {error or ''}".rstrip())
