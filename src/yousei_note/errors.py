"""Error taxonomy for the storage layer.

A missing key is never an error: every backend returns ``None`` (or
``False`` for deletes) instead of raising.
"""

from typing import Optional


class StorageError(Exception):
    """Base class for storage layer errors.

    Args:
        message: Human-readable description
        key: Storage key involved, if any
        backend: Storage type that raised, if any
    """

    def __init__(self, message: str = "", *, key: Optional[str] = None,
                 backend: Optional[str] = None):
        self.key = key
        self.backend = backend
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.key is not None:
            parts.append(f"key={self.key!r}")
        if self.backend is not None:
            parts.append(f"backend={self.backend!r}")
        return " | ".join(parts) if len(parts) > 1 else parts[0]


class ValidationError(StorageError):
    """Raised when input data or a configuration value is invalid."""
    pass


class StorageTimeoutError(StorageError, TimeoutError):
    """Raised when an operation exceeds its configured duration."""

    def __init__(self, timeout_ms: int, **kwargs):
        self.timeout_ms = timeout_ms
        super().__init__(f"Operation timed out after {timeout_ms}ms", **kwargs)


class TransportError(StorageError):
    """Raised on network or HTTP failures.

    Args:
        retryable: Whether retrying the request may help (connection
            failures are, HTTP status failures are not)
        status_code: HTTP status code when the server answered
    """

    def __init__(self, message: str = "", *, retryable: bool = False,
                 status_code: Optional[int] = None, **kwargs):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message, **kwargs)


class AuthError(StorageError):
    """Raised when credentials are missing or a session cannot be established."""
    pass


class RemoteError(StorageError):
    """Raised when the remote service answers with an ``error`` envelope."""
    pass


class NotInitializedError(StorageError):
    """Raised when a backend is used before ``init`` succeeded."""
    pass
