"""Value types shared by the backends, config stores and table service."""

import dataclasses
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .constants import DATA_PREFIX, KEY_SEPARATOR


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds')


@dataclasses.dataclass(frozen=True)
class Record:
    """One stored key/value pair with its write timestamps.

    :param key: Unique key within a store.
    :param value: Caller-defined JSON value, opaque to the storage layer.
    :param timestamp: Client-side write time (ISO-8601).
    :param last_modified: Time the backend last wrote the record (ISO-8601).
    """

    key: str
    value: Any
    timestamp: Optional[str] = None
    last_modified: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'value': self.value,
            'timestamp': self.timestamp,
            'lastModified': self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Record':
        return cls(
            key=str(data['key']),
            value=data.get('value'),
            timestamp=data.get('timestamp'),
            last_modified=data.get('lastModified', data.get('last_modified')),
        )


@dataclasses.dataclass(frozen=True)
class OperationResult:
    """Outcome of a write that may have been served by the local fallback.

    Truthy when the data was stored somewhere; ``fallback`` tells the
    caller it only reached local storage.
    """

    success: bool
    fallback: bool = False
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success


@dataclasses.dataclass(frozen=True)
class SyncStatus:
    """Remote store status as reported by ``getSyncStatus``."""

    connected: bool
    last_sync: Optional[str] = None
    item_count: int = 0
    sheet_name: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class SyncReport:
    """Result of one push of local ledger keys to a remote backend."""

    success: bool
    synced: int = 0
    failed: int = 0
    total: int = 0
    skipped: bool = False

    def __bool__(self) -> bool:
        return self.success


def ledger_key(store_id: str, day: date) -> str:
    """Build the ``yousei:<storeId>:<YYYY-MM-DD>`` key for a ledger day."""
    return f"{DATA_PREFIX}{store_id}{KEY_SEPARATOR}{day.isoformat()}"


def parse_ledger_key(key: str) -> Optional[Tuple[str, str]]:
    """Split a ledger key into ``(store_id, 'YYYY-MM-DD')``.

    Returns:
        The parts, or None when the key does not follow the convention
    """
    parts = key.split(KEY_SEPARATOR)
    if len(parts) != 3 or parts[0] + KEY_SEPARATOR != DATA_PREFIX:
        return None
    store_id, day = parts[1], parts[2]
    try:
        date.fromisoformat(day)
    except ValueError:
        return None
    return store_id, day
