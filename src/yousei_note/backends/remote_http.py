#!/usr/bin/env python3
"""Remote HTTP storage backend.

Talks to a spreadsheet-backed web app through a single endpoint. The
``action`` parameter selects the operation; reads go out as GET with the
parameters in the query string, writes as POST with a JSON body. Every
response is one JSON envelope:

    {"status": "success" | "error" | "not_found",
     "timestamp": "...", "data": ..., "error": "...", "message": "..."}
"""

import json
import logging
import time
from datetime import date
from typing import Any, Dict, List, Optional, Union

import certifi
import requests

from ..constants import DATA_PREFIX, DEFAULT_STORE_ID, STATUS, STORAGE_TYPES
from ..errors import (
    NotInitializedError,
    RemoteError,
    StorageError,
    StorageTimeoutError,
    TransportError,
    ValidationError,
)
from ..local_store import LocalStore
from ..models import Record, SyncReport, SyncStatus, now_iso
from ..retry import is_retryable
from ..validators import StoreIdValidator
from .base import KeyValueBackend

logger = logging.getLogger(__name__)

DateLike = Union[str, date]


def _date_str(value: DateLike) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)


class RemoteHttpBackend(KeyValueBackend):
    """Client for the action-dispatch table service."""

    storage_type = STORAGE_TYPES['GAS']

    def __init__(self, session: Optional[requests.Session] = None,
                 local_store: Optional[LocalStore] = None,
                 timeout_ms: Optional[int] = None,
                 max_retries: Optional[int] = None):
        """Initialize remote HTTP backend.

        Args:
            session: HTTP session (a new certifi-verified one if omitted)
            local_store: Local store pushed by :meth:`sync_with_local_storage`
            timeout_ms: Per-request timeout in ms
            max_retries: Retries for timeouts and connection failures
        """
        super().__init__(timeout_ms=timeout_ms, max_retries=max_retries)
        if session is None:
            session = requests.Session()
            session.verify = certifi.where()  # Explicit certificate validation
        self.session = session
        self.local_store = local_store
        self.web_app_url: Optional[str] = None
        self.store_id: Optional[str] = None

    def init(self, web_app_url: str, store_id: str = DEFAULT_STORE_ID) -> bool:
        """Point the backend at ``web_app_url`` and ping it.

        Returns:
            True if the ping succeeded

        Raises:
            ValidationError: If the URL or store id is missing or malformed
        """
        if not web_app_url:
            raise ValidationError("Web App URL is required", backend=self.storage_type)
        self.store_id = StoreIdValidator().validate(store_id)
        self.web_app_url = web_app_url
        self.initialized = False

        result = self.test_connection()
        if result['success']:
            self.initialized = True
            logger.info("Remote HTTP storage initialized successfully")
            return True

        logger.error(f"Remote HTTP storage connection test failed: {result.get('error')}")
        return False

    def test_connection(self) -> Dict[str, Any]:
        try:
            response = self.make_request('GET', {
                'action': 'ping',
                'timestamp': int(time.time() * 1000),
            })
        except StorageError as e:
            return {'success': False, 'error': str(e)}

        if response.get('status') == STATUS['SUCCESS']:
            return {'success': True, 'data': response.get('data')}
        return {'success': False, 'error': response.get('error')}

    def is_connected(self) -> bool:
        return self.initialized

    # Transport

    def make_request(self, method: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Send one action request, retrying timeouts and connection failures.

        Args:
            method: 'GET' for reads, 'POST' for writes
            data: Action parameters

        Returns:
            Decoded response envelope
        """
        if not self.web_app_url:
            raise NotInitializedError("Web App URL not configured", backend=self.storage_type)

        return self.with_retry(
            lambda: self.with_timeout(lambda: self._send(method, data)),
            should_retry=is_retryable,
        )

    def _send(self, method: str, data: Dict[str, Any]) -> Dict[str, Any]:
        timeout = self.timeout_ms / 1000
        headers = {'Content-Type': 'application/json'}
        try:
            if method == 'GET':
                params = {
                    key: value if isinstance(value, str) else json.dumps(value)
                    for key, value in data.items()
                }
                response = self.session.request(
                    'GET', self.web_app_url, params=params, headers=headers, timeout=timeout
                )
            else:
                response = self.session.request(
                    'POST', self.web_app_url, data=json.dumps(data), headers=headers, timeout=timeout
                )
        except requests.exceptions.Timeout:
            raise StorageTimeoutError(self.timeout_ms, backend=self.storage_type) from None
        except requests.exceptions.ConnectionError as e:
            raise TransportError(f"Network error: {e}", retryable=True,
                                 backend=self.storage_type) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}", backend=self.storage_type) from e

        if not response.ok:
            raise TransportError(
                f"HTTP {response.status_code}: {response.reason}",
                status_code=response.status_code,
                backend=self.storage_type,
            )

        try:
            result = response.json()
        except ValueError as e:
            raise TransportError(f"Malformed response: {e}", backend=self.storage_type) from e

        if not isinstance(result, dict):
            raise TransportError("Malformed response: expected a JSON object",
                                 backend=self.storage_type)
        return result

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise NotInitializedError("Remote HTTP storage not initialized",
                                      backend=self.storage_type)

    def _raise_remote(self, result: Dict[str, Any], default: str, key: Optional[str] = None):
        raise RemoteError(result.get('error') or result.get('message') or default,
                          key=key, backend=self.storage_type)

    # Key/value contract

    def set_item(self, key: str, value: Any) -> bool:
        """Write ``value`` under ``key`` in this store's sheet.

        Raises:
            ValidationError: If value is None or not JSON serializable
            RemoteError: If the service reports an error
            TransportError: If the service stays unreachable after retries
        """
        self._require_initialized()
        self.validate_data(value)

        result = self.make_request('POST', {
            'action': 'setItem',
            'key': key,
            'value': value,
            'storeId': self.store_id,
            'timestamp': now_iso(),
        })

        success = result.get('status') == STATUS['SUCCESS']
        self.log_operation('save', key, success, result.get('error'))
        if not success:
            self._raise_remote(result, 'Save failed', key)
        return True

    def save(self, key: str, data: Any) -> bool:
        return self.set_item(key, data)

    def get_item(self, key: str) -> Any:
        """Read ``key``.

        Returns None both for a missing key and for an unreachable service,
        so None does not prove the key is absent.
        """
        self._require_initialized()
        try:
            result = self.make_request('GET', {
                'action': 'getItem',
                'key': key,
                'storeId': self.store_id,
            })
        except (TransportError, StorageTimeoutError) as e:
            logger.error(f"Remote HTTP getItem failed for key {key}: {e}")
            return None

        status = result.get('status')
        self.log_operation('load', key, status in (STATUS['SUCCESS'], STATUS['NOT_FOUND']),
                           result.get('error'))
        if status == STATUS['SUCCESS']:
            return result.get('data')
        if status == STATUS['NOT_FOUND']:
            return None
        self._raise_remote(result, 'Get failed', key)

    def load(self, key: str) -> Any:
        return self.get_item(key)

    def remove_item(self, key: str) -> bool:
        """Delete ``key``.

        Returns:
            True if removed, False if the service had no such key
        """
        self._require_initialized()
        result = self.make_request('POST', {
            'action': 'removeItem',
            'key': key,
            'storeId': self.store_id,
        })

        status = result.get('status')
        if status == STATUS['SUCCESS']:
            self.log_operation('delete', key, True)
            return True
        if status == STATUS['NOT_FOUND']:
            return False
        self._raise_remote(result, 'Remove failed', key)

    def delete(self, key: str) -> bool:
        return self.remove_item(key)

    def get_all_items(self, prefix: str = '') -> List[Record]:
        self._require_initialized()
        result = self.make_request('GET', {
            'action': 'getAllItems',
            'prefix': prefix,
            'storeId': self.store_id,
        })
        if result.get('status') != STATUS['SUCCESS']:
            self._raise_remote(result, 'GetAll failed')
        return [Record.from_dict(item) for item in result.get('data') or []]

    def list(self, prefix: str = '') -> List[Record]:
        return self.get_all_items(prefix)

    # Ledger queries

    def get_date_range(self, start_date: DateLike, end_date: DateLike) -> List[Record]:
        """Ledger records dated within ``[start_date, end_date]``, oldest first."""
        self._require_initialized()
        result = self.make_request('GET', {
            'action': 'getDateRange',
            'startDate': _date_str(start_date),
            'endDate': _date_str(end_date),
            'storeId': self.store_id,
        })
        if result.get('status') != STATUS['SUCCESS']:
            self._raise_remote(result, 'GetDateRange failed')
        return [Record.from_dict(item) for item in result.get('data') or []]

    def get_previous_year_data(self, target_date: DateLike) -> Any:
        """Value recorded one year before ``target_date`` (within three days), or None."""
        self._require_initialized()
        result = self.make_request('GET', {
            'action': 'getPreviousYearData',
            'targetDate': _date_str(target_date),
            'storeId': self.store_id,
        })
        status = result.get('status')
        if status == STATUS['SUCCESS']:
            return result.get('data')
        if status == STATUS['NOT_FOUND']:
            return None
        self._raise_remote(result, 'GetPreviousYearData failed')

    def create_backup(self) -> Dict[str, Any]:
        """Copy this store's sheet into today's backup sheet.

        Returns:
            Dict with ``backupSheet`` and ``timestamp``
        """
        self._require_initialized()
        result = self.make_request('POST', {
            'action': 'createBackup',
            'storeId': self.store_id,
            'timestamp': now_iso(),
        })
        if result.get('status') != STATUS['SUCCESS']:
            self._raise_remote(result, 'Backup failed')
        return result.get('data') or {}

    def get_sync_status(self) -> SyncStatus:
        """Remote status; any failure is reported as not connected."""
        if not self.initialized:
            return SyncStatus(connected=False)

        try:
            result = self.make_request('GET', {
                'action': 'getSyncStatus',
                'storeId': self.store_id,
            })
        except StorageError as e:
            logger.error(f"Remote HTTP getSyncStatus failed: {e}")
            return SyncStatus(connected=False)

        if result.get('status') != STATUS['SUCCESS']:
            return SyncStatus(connected=False)

        data = result.get('data') or {}
        return SyncStatus(
            connected=True,
            last_sync=data.get('lastSync'),
            item_count=int(data.get('itemCount') or 0),
            sheet_name=data.get('sheetName'),
        )

    # Sync

    def sync_with_local_storage(self, local_store: Optional[LocalStore] = None) -> SyncReport:
        """Push every local ``yousei:`` key to the remote store.

        Keys are sent one at a time; a failing key is logged and skipped.
        """
        store = local_store or self.local_store
        if not self.initialized or store is None:
            logger.info("Remote HTTP storage not connected, skipping sync")
            return SyncReport(success=False)

        logger.info("Starting local storage sync with remote HTTP storage...")

        local_keys = [key for key in store.keys() if key.startswith(DATA_PREFIX)]
        synced = 0
        failed = 0
        for key in local_keys:
            local_data = store.get_item(key)
            if local_data is None or local_data == '':
                continue
            try:
                self.set_item(key, local_data)
                synced += 1
            except StorageError as e:
                failed += 1
                logger.warning(f"Failed to sync {key}: {e}")

        logger.info(f"Synced {synced} items to remote HTTP storage ({failed} failed)")
        return SyncReport(success=True, synced=synced, failed=failed, total=len(local_keys))
