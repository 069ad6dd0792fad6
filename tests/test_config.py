#!/usr/bin/env python3
"""Tests for Yousei Note configuration stores."""

import tempfile
import threading
from pathlib import Path

import pytest

from conftest import TOKEN, FakeDriveClient
from yousei_note.backends import CloudFileBackend, LocalBackend
from yousei_note.config import AppPaths, BaseConfig, CloudFileConfig, RemoteHttpConfig, select_backend
from yousei_note.constants import DEFAULT_CONFIGS
from yousei_note.errors import NotInitializedError, StorageError, ValidationError
from yousei_note.local_store import LocalStore
from yousei_note.models import SyncReport

URL = 'http://table.test/exec'


@pytest.fixture
def remote_config(local_store, session):
    config = RemoteHttpConfig(local_store, session=session)
    config.backend.sleep = lambda seconds: None
    yield config
    config.stop_auto_sync()


@pytest.fixture
def cloud_config(local_store):
    backend = CloudFileBackend(local_store, token_data=dict(TOKEN), client_factory=FakeDriveClient)
    return CloudFileConfig(local_store, backend=backend)


def test_app_paths(monkeypatch):
    """Test application paths honour YOUSEI_CONFIG_DIR."""
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv('YOUSEI_CONFIG_DIR', tmpdir)
        paths = AppPaths()
        assert paths.config_dir == Path(tmpdir)
        assert paths.local_store_path.name == 'local_storage.json'
        assert paths.token_path.parent == Path(tmpdir)


def test_config_defaults():
    """Test configuration initialization."""
    config = BaseConfig(LocalStore(), 'gasConfig', DEFAULT_CONFIGS['GAS'])
    assert config.get('store_id') == 'KRB01'
    assert config.get('sync_interval') == 300000
    assert config.is_enabled() is False


def test_config_save_load():
    """Test configuration save and load."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / 'local_storage.json'

        config1 = BaseConfig(LocalStore(path), 'gasConfig', DEFAULT_CONFIGS['GAS'])
        config1.set('sync_interval', '600000')
        config1.set('auto_sync', 'off')
        config1.enable(web_app_url=URL)

        config2 = BaseConfig(LocalStore(path), 'gasConfig', DEFAULT_CONFIGS['GAS'])
        assert config2.get('sync_interval') == 600000
        assert config2.get('auto_sync') is False
        assert config2.get('web_app_url') == URL
        assert config2.is_enabled()
        # Keys never saved still come from the defaults
        assert config2.get('store_id') == 'KRB01'


def test_config_set_validates():
    config = BaseConfig(LocalStore(), 'gasConfig', DEFAULT_CONFIGS['GAS'])
    with pytest.raises(ValidationError):
        config.set('sync_interval', 10)
    with pytest.raises(ValidationError):
        config.set('store_id', 'bad id!')
    with pytest.raises(ValidationError):
        config.set('web_app_url', 'ftp://example.com')
    assert config.get('sync_interval') == 300000


def test_config_reset():
    store = LocalStore()
    config = BaseConfig(store, 'gasConfig', DEFAULT_CONFIGS['GAS'])
    config.enable()
    config.reset()

    assert not config.is_enabled()
    assert 'gasConfig' not in store


def test_config_corrupt_blob_uses_defaults():
    store = LocalStore()
    store.set_item('gasConfig', '{broken')
    config = BaseConfig(store, 'gasConfig', DEFAULT_CONFIGS['GAS'])
    assert config.get_config() == DEFAULT_CONFIGS['GAS']


def test_config_reads_json_string_blob():
    store = LocalStore()
    store.set_item('gasConfig', '{"store_id": "ABC1", "enabled": true}')
    config = BaseConfig(store, 'gasConfig', DEFAULT_CONFIGS['GAS'])
    assert config.get('store_id') == 'ABC1'
    assert config.is_enabled()


def test_remote_enable(remote_config, local_store):
    assert remote_config.enable(URL, 'KRB01')

    saved = local_store.get_item('gasConfig')
    assert saved['web_app_url'] == URL
    assert saved['enabled'] is True
    assert saved['last_sync']
    assert remote_config.is_configured()
    assert remote_config.is_auto_syncing()


def test_remote_enable_failure_saves_nothing(remote_config, local_store, session, connection_error):
    session.failures.extend([connection_error] * 4)

    assert remote_config.enable(URL) is False
    assert 'gasConfig' not in local_store
    assert not remote_config.is_enabled()


def test_remote_enable_rejects_bad_url(remote_config):
    with pytest.raises(ValidationError):
        remote_config.enable('not a url')


def test_remote_disable_stops_sync(remote_config):
    remote_config.enable(URL)
    remote_config.disable()
    assert not remote_config.is_enabled()
    assert not remote_config.is_auto_syncing()


def test_start_auto_sync_replaces_timer(remote_config):
    remote_config.enable(URL)
    first = remote_config._timer
    assert remote_config.start_auto_sync()
    assert remote_config._timer is not first
    assert not first.is_running()


def test_auto_sync_requires_enabled(remote_config):
    assert remote_config.start_auto_sync() is False
    assert not remote_config.is_auto_syncing()


def test_auto_sync_timer_runs_pass(remote_config, monkeypatch):
    remote_config.enable(URL)
    ran = threading.Event()

    def fake_sync(store=None):
        ran.set()
        return SyncReport(success=True)

    monkeypatch.setattr(remote_config.backend, 'sync_with_local_storage', fake_sync)
    remote_config.save_config({'sync_interval': 20, 'last_sync': None})
    remote_config.start_auto_sync()

    assert ran.wait(2)
    remote_config.stop_auto_sync()
    assert remote_config.get('last_sync') is not None


def test_manual_sync_pushes_ledger(remote_config, local_store):
    remote_config.enable(URL)
    remote_config.save_config({'last_sync': None})
    local_store.set_item('yousei:KRB01:2024-05-01', {'sales': 4})

    report = remote_config.perform_manual_sync()
    assert report.success
    assert report.synced == 1
    assert remote_config.backend.load('yousei:KRB01:2024-05-01') == {'sales': 4}
    assert remote_config.get('last_sync') is not None


def test_manual_sync_requires_enabled(remote_config):
    with pytest.raises(NotInitializedError):
        remote_config.perform_manual_sync()


def test_failed_sync_keeps_last_sync(remote_config, monkeypatch):
    remote_config.enable(URL)
    remote_config.save_config({'last_sync': None})

    def broken_sync(store=None):
        raise StorageError('remote down')

    monkeypatch.setattr(remote_config.backend, 'sync_with_local_storage', broken_sync)
    report = remote_config.perform_auto_sync()
    assert not report.success
    assert remote_config.get('last_sync') is None


def test_overlapping_sync_is_skipped(remote_config):
    remote_config.enable(URL)
    remote_config._sync_lock.acquire()
    try:
        report = remote_config.perform_auto_sync()
    finally:
        remote_config._sync_lock.release()

    assert report.skipped
    assert not report.success


def test_remote_test_connection(remote_config):
    assert remote_config.test_connection(URL)
    assert not remote_config.test_connection('')
    assert not remote_config.is_enabled()


def test_remote_auto_init(remote_config, local_store, session):
    remote_config.enable(URL)
    remote_config.stop_auto_sync()

    restored = RemoteHttpConfig(local_store, session=session)
    try:
        assert restored.auto_init()
        assert restored.backend.is_connected()
        assert restored.is_auto_syncing()
    finally:
        restored.stop_auto_sync()


def test_cloud_enable(cloud_config, local_store):
    assert cloud_config.enable('id.apps.googleusercontent.com', 'api-key')

    saved = local_store.get_item('gdriveConfig')
    assert saved['enabled'] is True
    assert saved['folder_id'] == cloud_config.backend.folder_id
    assert cloud_config.is_configured()

    cloud_config.disable()
    assert not cloud_config.is_configured()


def test_cloud_enable_failure(local_store):
    backend = CloudFileBackend(local_store, client_factory=FakeDriveClient)
    config = CloudFileConfig(local_store, backend=backend)

    assert config.enable('id.apps.googleusercontent.com', 'api-key') is False
    assert 'gdriveConfig' not in local_store


def test_cloud_auto_init(cloud_config):
    assert cloud_config.auto_init() is False
    cloud_config.enable('id.apps.googleusercontent.com', 'api-key', folder_id='folder-x')
    assert cloud_config.auto_init()
    assert cloud_config.backend.folder_id == 'folder-x'


def test_select_backend_defaults_to_local(local_store, remote_config, cloud_config):
    backend = select_backend(local_store, remote_config, cloud_config)
    assert isinstance(backend, LocalBackend)
    assert backend.is_initialized()


def test_select_backend_prefers_cloud(local_store, remote_config, cloud_config):
    remote_config.enable(URL)
    assert select_backend(local_store, remote_config, cloud_config) is remote_config.backend

    cloud_config.enable('id.apps.googleusercontent.com', 'api-key')
    assert select_backend(local_store, remote_config, cloud_config) is cloud_config.backend
