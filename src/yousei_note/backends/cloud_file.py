#!/usr/bin/env python3
"""Google Drive storage backend.

Each key is stored as one JSON file inside a single Drive folder. The file
name is the key with path-hostile characters replaced, plus ``.json``; the
content is an envelope ``{"key": ..., "value": ..., "timestamp": ...}``.

When a Drive call fails the read or write is served by the local store
instead. The returned :class:`OperationResult` (and ``last_fallback`` for
reads) tells the caller which one happened.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

import requests

from ..constants import DEFAULT_FOLDER_NAME, STORAGE_TYPES
from ..drive_client import DriveClient
from ..errors import AuthError, NotInitializedError, StorageError, TransportError, ValidationError
from ..local_store import LocalStore
from ..models import OperationResult, Record, now_iso
from .base import KeyValueBackend

logger = logging.getLogger(__name__)

# Runs the interactive sign-in for a client and returns its token data
Authenticator = Callable[[DriveClient], Optional[Dict[str, Any]]]

_FORBIDDEN_CHARS = re.compile(r'[<>:"/\\|?*]')

# Failures served by the local store; validation and auth errors propagate
_CLOUD_FAILURES = (requests.exceptions.RequestException, TransportError, NotInitializedError,
                   ValueError, KeyError)


class CloudFileBackend(KeyValueBackend):
    """Key/value storage on top of files in one Google Drive folder."""

    storage_type = STORAGE_TYPES['GDRIVE']

    def __init__(self, local_store: LocalStore,
                 authenticator: Optional[Authenticator] = None,
                 token_data: Optional[Dict[str, Any]] = None,
                 folder_name: str = DEFAULT_FOLDER_NAME,
                 on_token_update: Optional[Callable[[Dict[str, Any]], None]] = None,
                 client_factory: Optional[Callable[..., DriveClient]] = None):
        """Initialize Drive backend.

        Args:
            local_store: Store used when a Drive operation fails
            authenticator: Interactive sign-in, called when no token is cached
            token_data: Previously saved OAuth token data
            folder_name: Folder looked up or created when no folder id is given
            on_token_update: Called whenever the OAuth token changes
            client_factory: Builds the Drive client (DriveClient by default)
        """
        super().__init__()
        self.local_store = local_store
        self.authenticator = authenticator
        self.token_data = token_data
        self.folder_name = folder_name
        self.on_token_update = on_token_update
        self.client_factory = client_factory or DriveClient
        self.client: Optional[DriveClient] = None
        self.folder_id: Optional[str] = None
        self.last_fallback = False

    def init(self, client_id: str, api_key: str, folder_id: Optional[str] = None,
             client_secret: Optional[str] = None) -> bool:
        """Create the Drive session and resolve the storage folder.

        Returns:
            True if the backend is ready, False if Drive could not be reached

        Raises:
            ValidationError: If client_id is missing
        """
        if not client_id:
            raise ValidationError("Client ID is required", backend=self.storage_type)

        self.initialized = False
        self.client = self.client_factory(
            client_id,
            api_key=api_key,
            client_secret=client_secret,
            token_data=self.token_data,
            on_token_update=self.on_token_update,
        )
        self.folder_id = folder_id or None

        try:
            if not self.folder_id:
                self._ensure_authenticated()
                self.folder_id = self.find_or_create_folder(self.folder_name)
        except (StorageError, *_CLOUD_FAILURES) as e:
            logger.error(f"Google Drive storage initialization failed: {e}")
            return False

        self.initialized = True
        logger.info("Google Drive storage initialized successfully")
        return True

    def authenticate(self) -> bool:
        """Make sure the client holds a usable access token.

        Raises:
            AuthError: If sign-in is unavailable or fails
        """
        if self.client is None:
            raise AuthError("Drive client not created. Call init() first.",
                            backend=self.storage_type)

        if self.client.access_token and self.client.is_signed_in():
            return True

        if self.authenticator is None:
            raise AuthError("No authenticator configured", backend=self.storage_type)

        token_data = self.authenticator(self.client)
        if not token_data or not token_data.get('access_token'):
            raise AuthError("Authentication failed", backend=self.storage_type)

        self.client.token_data = token_data
        self.token_data = token_data
        logger.info("Google Drive authentication successful")
        return True

    def _ensure_authenticated(self) -> None:
        if self.client is None or not self.client.access_token:
            self.authenticate()

    def _require_ready(self) -> None:
        if not self.initialized or self.client is None:
            raise NotInitializedError("Google Drive storage not initialized",
                                      backend=self.storage_type)
        self._ensure_authenticated()

    def find_or_create_folder(self, folder_name: str) -> str:
        """Return the id of the first folder named ``folder_name``, creating it if absent."""
        folder_id = self.client.find_folder(folder_name)
        if folder_id:
            logger.debug(f"Using existing folder {folder_name} ({folder_id})")
            return folder_id
        return self.client.create_folder(folder_name)

    @staticmethod
    def sanitize_file_name(key: str) -> str:
        """Map a key to its file name: ``<>:"/\\|?*`` become ``_``, plus ``.json``."""
        return _FORBIDDEN_CHARS.sub('_', key) + '.json'

    def _download_envelope(self, file_id: str) -> Optional[Dict[str, Any]]:
        """Parsed envelope of a file, or None when it does not hold a JSON object."""
        envelope = json.loads(self.client.download_file(file_id))
        if not isinstance(envelope, dict):
            logger.warning(f"Drive file {file_id} does not hold a JSON object")
            return None
        return envelope

    # Key/value contract

    def set_item(self, key: str, value: Any) -> OperationResult:
        """Write ``value`` to the key's file, or to the local store on failure.

        Raises:
            ValidationError: If value is None or not JSON serializable
            AuthError: If sign-in is needed and fails
        """
        self.validate_data(value)

        try:
            self._require_ready()
            file_name = self.sanitize_file_name(key)
            content = json.dumps({'key': key, 'value': value, 'timestamp': now_iso()},
                                 ensure_ascii=False)

            existing = self.client.find_file(file_name, self.folder_id)
            if existing:
                self.client.update_file(existing['id'], content)
            else:
                self.client.create_file(file_name, self.folder_id, content)
        except _CLOUD_FAILURES as e:
            logger.warning(f"Drive setItem failed for key {key}, saving locally: {e}")
            self.local_store.set_item(key, value)
            return OperationResult(success=True, fallback=True, error=str(e))

        self.log_operation('save', key, True)
        return OperationResult(success=True)

    def save(self, key: str, data: Any) -> OperationResult:
        return self.set_item(key, data)

    def get_item(self, key: str) -> Any:
        """Read ``key`` from Drive, or from the local store on failure.

        ``last_fallback`` is set when the value came from the local store.
        """
        self.last_fallback = False
        try:
            self._require_ready()
            file = self.client.find_file(self.sanitize_file_name(key), self.folder_id)
            if not file:
                return None
            envelope = self._download_envelope(file['id'])
            if envelope is None:
                raise ValueError(f"Malformed envelope in Drive file {file['id']}")
            return envelope.get('value')
        except _CLOUD_FAILURES as e:
            logger.warning(f"Drive getItem failed for key {key}, reading locally: {e}")
            self.last_fallback = True
            return self.local_store.get_item(key)

    def load(self, key: str) -> Any:
        return self.get_item(key)

    def remove_item(self, key: str) -> OperationResult:
        """Delete the key's file, or the local copy on failure.

        ``success`` is True when a record was removed.
        """
        try:
            self._require_ready()
            file = self.client.find_file(self.sanitize_file_name(key), self.folder_id)
            if file:
                self.client.delete_file(file['id'])
                self.log_operation('delete', key, True)
        except _CLOUD_FAILURES as e:
            logger.warning(f"Drive removeItem failed for key {key}, removing locally: {e}")
            removed = self.local_store.remove_item(key)
            return OperationResult(success=removed, fallback=True, error=str(e))

        return OperationResult(success=file is not None)

    def delete(self, key: str) -> bool:
        return bool(self.remove_item(key))

    def list(self, prefix: str = '') -> List[Record]:
        """Records whose key starts with ``prefix``, oldest file first."""
        self.last_fallback = False
        try:
            self._require_ready()
            records = []
            for file in self.client.list_files(self.folder_id):
                if not file.get('name', '').endswith('.json'):
                    continue
                envelope = self._download_envelope(file['id'])
                if envelope is None:
                    continue
                key = envelope.get('key')
                if not isinstance(key, str) or not key.startswith(prefix):
                    continue
                records.append(Record(
                    key=key,
                    value=envelope.get('value'),
                    timestamp=envelope.get('timestamp'),
                    last_modified=file.get('modifiedTime'),
                ))
            return records
        except _CLOUD_FAILURES as e:
            logger.warning(f"Drive list failed, listing locally: {e}")
            self.last_fallback = True
            return [
                Record(key=key, value=entry['value'], timestamp=entry.get('timestamp'),
                       last_modified=entry.get('timestamp'))
                for key, entry in self.local_store.items(prefix)
            ]

    def is_connected(self) -> bool:
        """Initialized, holding an access token and signed in right now."""
        return bool(
            self.initialized
            and self.client is not None
            and self.client.access_token
            and self.client.is_signed_in()
        )

    def test_connection(self) -> Dict[str, Any]:
        if self.is_connected():
            return {'success': True, 'message': 'Google Drive connection test passed'}
        return {'success': False, 'error': 'Not signed in to Google Drive'}
