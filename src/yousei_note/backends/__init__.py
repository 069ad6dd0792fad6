"""Storage backend implementations."""

from .base import KeyValueBackend
from .cloud_file import CloudFileBackend
from .local import LocalBackend
from .remote_http import RemoteHttpBackend

__all__ = ['KeyValueBackend', 'LocalBackend', 'RemoteHttpBackend', 'CloudFileBackend']
