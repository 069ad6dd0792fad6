#!/usr/bin/env python3
"""Persistent local key/value store.

Plays the role a browser's ``localStorage`` plays for the ledger app: an
insertion-ordered map of string keys to JSON values that survives restarts.

File Structure
==============

local_storage.json contains:

{
  "items": {
    "yousei:KRB01:2024-05-01": {
      "value": "{\"sales\": 12}",           // Any JSON value
      "timestamp": "2024-05-01T09:00:00.000+00:00"  // Last write (ISO 8601)
    },
    "gasConfig": {...}
  }
}
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .models import now_iso

logger = logging.getLogger(__name__)


class LocalStore:
    """JSON file-backed key/value store.

    The whole map is held in memory and written back atomically on every
    mutation. With ``path=None`` the store lives in memory only.
    """

    def __init__(self, path: Optional[Path] = None):
        """Initialize local store.

        Args:
            path: Path to the JSON file (None for an in-memory store)
        """
        self.path = path
        self._items: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._load()

    def _load(self) -> None:
        """Load entries from disk, treating a corrupt file as empty."""
        if self.path is None or not self.path.exists():
            return

        try:
            data = json.loads(self.path.read_text(encoding='utf-8'))
            items = data.get('items', {})
            if not isinstance(items, dict):
                raise ValueError("'items' must be an object")
            self._items = dict(items)
            logger.debug(f"Loaded {len(self._items)} local items from {self.path}")
        except (json.JSONDecodeError, OSError, ValueError, AttributeError) as e:
            logger.error(f"Local store {self.path} unreadable, starting empty: {e}")
            self._items = {}

    def _save(self) -> None:
        """Write all entries to disk atomically."""
        if self.path is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix(self.path.suffix + '.tmp')
        temp_file.write_text(
            json.dumps({'items': self._items}, ensure_ascii=False, indent=2),
            encoding='utf-8',
        )
        temp_file.replace(self.path)

        # Secure file permissions (owner read/write only)
        self.path.chmod(0o600)

    def get_item(self, key: str) -> Any:
        """Return the value stored under ``key`` or None."""
        with self._lock:
            entry = self._items.get(key)
            return entry['value'] if entry is not None else None

    def entry(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the raw entry (value and timestamp) or None."""
        with self._lock:
            entry = self._items.get(key)
            return dict(entry) if entry is not None else None

    def set_item(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``.

        Overwriting keeps the key's position; new keys go to the end.
        """
        with self._lock:
            self._items[key] = {'value': value, 'timestamp': now_iso()}
            self._save()

    def remove_item(self, key: str) -> bool:
        """Remove ``key``.

        Returns:
            True if the key existed
        """
        with self._lock:
            if key not in self._items:
                return False
            del self._items[key]
            self._save()
            return True

    def keys(self) -> List[str]:
        """All keys in insertion order."""
        with self._lock:
            return list(self._items)

    def key(self, index: int) -> Optional[str]:
        """Key at ``index`` in insertion order, or None when out of range."""
        with self._lock:
            keys = list(self._items)
            if 0 <= index < len(keys):
                return keys[index]
            return None

    def items(self, prefix: str = '') -> List[Tuple[str, Dict[str, Any]]]:
        """Snapshot of ``(key, entry)`` pairs whose key starts with ``prefix``."""
        with self._lock:
            return [
                (key, dict(entry))
                for key, entry in self._items.items()
                if key.startswith(prefix)
            ]

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            self._items.clear()
            self._save()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())
