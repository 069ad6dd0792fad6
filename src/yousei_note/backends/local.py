"""Local persistent storage backend."""

from typing import Any, List, Optional

from ..constants import STORAGE_TYPES
from ..local_store import LocalStore
from ..models import Record
from .base import KeyValueBackend


class LocalBackend(KeyValueBackend):
    """Pass-through to the local persistent store.

    The store is not partitioned: callers prefix keys themselves, or pass
    a ``namespace`` which is joined in front of every key.
    """

    storage_type = STORAGE_TYPES['LOCAL']

    def __init__(self, store: LocalStore, namespace: Optional[str] = None):
        super().__init__()
        self.store = store
        self.namespace = namespace

    def init(self) -> bool:
        self.initialized = True
        return True

    def _storage_key(self, key: str) -> str:
        return self.generate_key(self.namespace, key)

    def save(self, key: str, data: Any) -> bool:
        self.validate_data(data)
        storage_key = self._storage_key(key)
        self.store.set_item(storage_key, data)
        self.log_operation('save', storage_key, True)
        return True

    def load(self, key: str) -> Any:
        return self.store.get_item(self._storage_key(key))

    def delete(self, key: str) -> bool:
        storage_key = self._storage_key(key)
        removed = self.store.remove_item(storage_key)
        if removed:
            self.log_operation('delete', storage_key, True)
        return removed

    def list(self, prefix: str = '') -> List[Record]:
        full_prefix = self._storage_key(prefix) if prefix else (
            f"{self.namespace}." if self.namespace else ''
        )
        strip = len(self.namespace) + 1 if self.namespace else 0
        return [
            Record(
                key=key[strip:],
                value=entry['value'],
                timestamp=entry.get('timestamp'),
                last_modified=entry.get('timestamp'),
            )
            for key, entry in self.store.items(full_prefix)
        ]
