"""Yousei Note - storage and sync layer for the daily yousei ledger."""

__version__ = '0.1.0'
__author__ = 'Yousei Note Developers'
__license__ = 'MIT'

from .config import CloudFileConfig, RemoteHttpConfig, select_backend
from .local_store import LocalStore
from .backends import CloudFileBackend, LocalBackend, RemoteHttpBackend

__all__ = [
    'CloudFileBackend',
    'CloudFileConfig',
    'LocalBackend',
    'LocalStore',
    'RemoteHttpBackend',
    'RemoteHttpConfig',
    'select_backend',
]
