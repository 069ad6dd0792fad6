#!/usr/bin/env python3
"""Configuration management for Yousei Note.

Backend settings live in the local persistent store, one JSON object per
backend:

  "gasConfig":    {"web_app_url", "store_id", "enabled", "auto_sync",
                   "sync_interval" (ms), "last_sync" (ISO 8601 or null)}
  "gdriveConfig": {"client_id", "api_key", "client_secret", "folder_id",
                   "enabled", "folder_name"}

Stored objects are merged over the defaults when loaded and rewritten in
full on every change.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from .backends import CloudFileBackend, KeyValueBackend, LocalBackend, RemoteHttpBackend
from .backends.cloud_file import Authenticator
from .constants import DEFAULT_CONFIGS, STORAGE_KEYS
from .credentials import TokenStore
from .errors import NotInitializedError, StorageError, ValidationError
from .local_store import LocalStore
from .models import SyncReport, now_iso
from .scheduler import RepeatingTimer
from .validators import validate_config_value

logger = logging.getLogger(__name__)


class AppPaths:
    """Locations of the files Yousei Note keeps on disk."""

    DEFAULT_CONFIG_DIR = Path.home() / ".config" / "yousei"
    LOCAL_STORE_FILE = "local_storage.json"
    TOKEN_FILE = ".gdrive_token"
    LOG_FILE = "yousei.log"
    TABLES_FILE = "tables.sqlite3"

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize application paths.

        Args:
            config_dir: Custom configuration directory path. Defaults to
                ``$YOUSEI_CONFIG_DIR`` or ``~/.config/yousei``
        """
        if config_dir is None:
            env_dir = os.environ.get('YOUSEI_CONFIG_DIR')
            config_dir = Path(env_dir) if env_dir else self.DEFAULT_CONFIG_DIR
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.local_store_path = self.config_dir / self.LOCAL_STORE_FILE
        self.token_path = self.config_dir / self.TOKEN_FILE
        self.log_path = self.config_dir / self.LOG_FILE
        self.tables_path = self.config_dir / self.TABLES_FILE


class BaseConfig:
    """One backend's settings, persisted as a single object in the local store."""

    def __init__(self, store: LocalStore, storage_key: str,
                 default_config: Optional[Dict[str, Any]] = None):
        """Initialize configuration.

        Args:
            store: Local persistent store holding the config object
            storage_key: Key of the config object in the store
            default_config: Values used for keys never saved
        """
        self.store = store
        self.storage_key = storage_key
        self.default_config = dict(default_config or {})
        self.config = self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load configuration merged over the defaults."""
        saved = self.store.get_item(self.storage_key)
        if saved is None:
            return dict(self.default_config)

        try:
            if isinstance(saved, str):
                saved = json.loads(saved)
            if not isinstance(saved, dict):
                raise ValueError(f"expected an object, got {type(saved).__name__}")
        except ValueError as e:
            logger.error(f"Config load error for {self.storage_key}, using defaults: {e}")
            return dict(self.default_config)

        logger.debug(f"Loaded config from {self.storage_key}")
        return {**self.default_config, **saved}

    def save_config(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Merge ``config`` into the current settings and persist all of them."""
        if config:
            self.config.update(config)
        self.store.set_item(self.storage_key, dict(self.config))

    def get_config(self) -> Dict[str, Any]:
        return dict(self.config)

    def get(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value with validation.

        Raises:
            ValidationError: If value is invalid for the given key
        """
        self.save_config({key: validate_config_value(key, value)})

    def is_enabled(self) -> bool:
        return self.config.get('enabled') is True

    def enable(self, **additional: Any) -> None:
        self.save_config({**additional, 'enabled': True})

    def disable(self) -> None:
        self.save_config({'enabled': False})

    def reset(self) -> None:
        """Forget saved settings and return to the defaults."""
        self.config = dict(self.default_config)
        self.store.remove_item(self.storage_key)


class RemoteHttpConfig(BaseConfig):
    """Settings and auto-sync scheduling for the remote HTTP backend."""

    def __init__(self, store: LocalStore, backend: Optional[RemoteHttpBackend] = None,
                 session: Optional[requests.Session] = None):
        super().__init__(store, STORAGE_KEYS['GAS_CONFIG'], DEFAULT_CONFIGS['GAS'])
        self.backend = backend or RemoteHttpBackend(session=session, local_store=store)
        self._timer: Optional[RepeatingTimer] = None
        self._sync_lock = threading.Lock()

    def enable(self, web_app_url: str, store_id: Optional[str] = None) -> bool:
        """Connect to ``web_app_url`` and, if that works, save and start syncing.

        Returns:
            True if the connection test passed

        Raises:
            ValidationError: If the URL or store id is malformed
        """
        web_app_url = validate_config_value('web_app_url', web_app_url)
        store_id = validate_config_value('store_id', store_id or self.get('store_id'))

        if not self.backend.init(web_app_url, store_id):
            return False

        self.save_config({
            'web_app_url': web_app_url,
            'store_id': store_id,
            'enabled': True,
            'last_sync': now_iso(),
        })
        logger.info(f"Remote HTTP storage enabled for store {store_id}")

        if self.get('auto_sync'):
            self.start_auto_sync()
        return True

    def disable(self) -> None:
        super().disable()
        self.stop_auto_sync()
        logger.info("Remote HTTP storage disabled")

    def start_auto_sync(self) -> bool:
        """(Re)start the recurring sync timer.

        Returns:
            True if a timer is now running
        """
        self.stop_auto_sync()

        if not (self.is_enabled() and self.get('auto_sync')):
            return False

        interval = int(self.get('sync_interval'))
        self._timer = RepeatingTimer(interval, self.perform_auto_sync, name='yousei-auto-sync')
        self._timer.start()
        logger.info(f"Auto sync started (interval: {interval / 1000:.0f}s)")
        return True

    def stop_auto_sync(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.info("Auto sync stopped")

    def is_auto_syncing(self) -> bool:
        return self._timer is not None and self._timer.is_running()

    def perform_auto_sync(self) -> SyncReport:
        """Push local ledger keys to the remote store.

        Only one pass runs at a time; a call made while another pass is in
        flight returns a report with ``skipped=True``.
        """
        if not self.is_enabled() or not self.backend.is_connected():
            return SyncReport(success=False)

        if not self._sync_lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            return SyncReport(success=False, skipped=True)

        try:
            try:
                report = self.backend.sync_with_local_storage(self.store)
            except StorageError as e:
                logger.error(f"Auto sync error: {e}")
                return SyncReport(success=False)

            if report.success:
                self.save_config({'last_sync': now_iso()})
            return report
        finally:
            self._sync_lock.release()

    def perform_manual_sync(self) -> SyncReport:
        """Run a sync pass now.

        Raises:
            NotInitializedError: If the remote backend is not enabled
        """
        if not self.is_enabled():
            raise NotInitializedError("Remote HTTP storage is not enabled",
                                      backend=self.backend.storage_type)
        return self.perform_auto_sync()

    def test_connection(self, web_app_url: str) -> bool:
        """Ping ``web_app_url`` with a throwaway backend."""
        probe = RemoteHttpBackend(session=self.backend.session)
        try:
            return probe.init(web_app_url, self.get('store_id'))
        except ValidationError as e:
            logger.error(f"Connection test failed: {e}")
            return False

    def is_configured(self) -> bool:
        return bool(self.is_enabled() and self.get('web_app_url'))

    def auto_init(self) -> bool:
        """Reconnect with saved settings and resume auto sync."""
        if not self.is_configured():
            return False

        try:
            success = self.backend.init(self.get('web_app_url'), self.get('store_id'))
        except ValidationError as e:
            logger.error(f"Auto init failed: {e}")
            return False

        if success and self.get('auto_sync'):
            self.start_auto_sync()
        return success


class CloudFileConfig(BaseConfig):
    """Settings for the Google Drive backend."""

    def __init__(self, store: LocalStore, backend: Optional[CloudFileBackend] = None,
                 token_store: Optional[TokenStore] = None,
                 authenticator: Optional[Authenticator] = None):
        super().__init__(store, STORAGE_KEYS['GDRIVE_CONFIG'], DEFAULT_CONFIGS['GDRIVE'])
        self.token_store = token_store
        self.authenticator = authenticator
        self.backend = backend or self._new_backend()

    def _new_backend(self) -> CloudFileBackend:
        return CloudFileBackend(
            self.store,
            authenticator=self.authenticator,
            token_data=self.token_store.load_token() if self.token_store else None,
            folder_name=self.get('folder_name'),
            on_token_update=self.token_store.save_token if self.token_store else None,
        )

    def enable(self, client_id: str, api_key: str, folder_id: Optional[str] = None,
               client_secret: Optional[str] = None) -> bool:
        """Initialize Drive with these credentials and save them on success.

        Raises:
            ValidationError: If client_id is missing
        """
        client_secret = client_secret or self.get('client_secret') or None
        if not self.backend.init(client_id, api_key, folder_id or None, client_secret):
            return False

        self.save_config({
            'client_id': client_id,
            'api_key': api_key,
            'client_secret': client_secret or '',
            'folder_id': self.backend.folder_id or '',
            'enabled': True,
        })
        logger.info("Google Drive storage enabled")
        return True

    def test_connection(self, client_id: str, api_key: str) -> bool:
        """Initialize and sign in with a throwaway backend."""
        probe = self._new_backend()
        try:
            if not probe.init(client_id, api_key, client_secret=self.get('client_secret') or None):
                return False
            return probe.authenticate()
        except StorageError as e:
            logger.error(f"Connection test failed: {e}")
            return False

    def is_configured(self) -> bool:
        return bool(self.is_enabled() and self.get('client_id') and self.get('api_key'))

    def auto_init(self) -> bool:
        if not self.is_configured():
            return False

        try:
            return self.backend.init(
                self.get('client_id'),
                self.get('api_key'),
                self.get('folder_id') or None,
                self.get('client_secret') or None,
            )
        except ValidationError as e:
            logger.error(f"Auto init failed: {e}")
            return False


def select_backend(store: LocalStore,
                   remote_config: Optional[RemoteHttpConfig] = None,
                   cloud_config: Optional[CloudFileConfig] = None) -> KeyValueBackend:
    """Return the backend data should go to.

    Drive wins over the remote HTTP backend when both are configured and
    initialized; the local store is used when neither is.
    """
    if cloud_config and cloud_config.is_configured() and cloud_config.backend.is_initialized():
        return cloud_config.backend
    if remote_config and remote_config.is_configured() and remote_config.backend.is_initialized():
        return remote_config.backend

    backend = LocalBackend(store)
    backend.init()
    return backend
