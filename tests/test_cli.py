#!/usr/bin/env python3
"""Tests for the yousei command-line interface on the local backend."""

import json

import pytest

from yousei_note.cli import main
from yousei_note.local_store import LocalStore


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv('YOUSEI_CONFIG_DIR', str(tmp_path))
    monkeypatch.delenv('YOUSEI_LOG_LEVEL', raising=False)
    return tmp_path


def test_no_command_prints_help(config_dir, capsys):
    assert main([]) == 1
    assert 'usage' in capsys.readouterr().out


def test_put_get_list_delete(config_dir, capsys):
    assert main(['put', 'yousei:KRB01:2024-05-01', '{"sales": 12}']) == 0
    assert main(['put', 'note', 'plain text']) == 0
    assert 'localStorage' in capsys.readouterr().out

    assert main(['get', 'yousei:KRB01:2024-05-01']) == 0
    assert json.loads(capsys.readouterr().out) == {'sales': 12}

    assert main(['list', 'yousei:']) == 0
    out = capsys.readouterr().out
    assert '(1 entries)' in out
    assert 'yousei:KRB01:2024-05-01' in out

    assert main(['delete', 'note']) == 0
    assert main(['delete', 'note']) == 1
    assert main(['get', 'note']) == 1

    store = LocalStore(config_dir / 'local_storage.json')
    assert store.get_item('yousei:KRB01:2024-05-01') == {'sales': 12}


def test_config_set_and_list(config_dir, capsys):
    assert main(['config', 'remote', '--set', 'sync_interval=600000', 'auto_sync=off']) == 0
    assert main(['config', 'remote', '--set', 'sync_interval=5']) == 1
    assert main(['config', 'remote', '--set', 'missing-equals']) == 1
    capsys.readouterr()

    assert main(['config', 'remote', '--list']) == 0
    out = capsys.readouterr().out
    assert 'sync_interval = 600000' in out
    assert 'auto_sync = False' in out


def test_config_hides_secrets(config_dir, capsys):
    assert main(['config', 'drive', '--set', 'api_key=secret-key']) == 0
    capsys.readouterr()
    main(['config', 'drive', '--list'])
    out = capsys.readouterr().out
    assert 'secret-key' not in out
    assert 'api_key = ***' in out


def test_status(config_dir, capsys):
    main(['put', 'yousei:KRB01:2024-05-01', '1'])
    capsys.readouterr()

    assert main(['status']) == 0
    out = capsys.readouterr().out
    assert 'Local Ledger Entries: 1' in out
    assert 'Not authenticated' in out


def test_sync_requires_remote(config_dir, capsys):
    assert main(['sync']) == 1
    assert 'not enabled' in capsys.readouterr().out


def test_enable_remote_rejects_bad_url(config_dir, capsys):
    assert main(['enable-remote', 'not-a-url']) == 1
    assert '✗' in capsys.readouterr().out


def test_disable_drive(config_dir, capsys):
    assert main(['disable-drive']) == 0
    assert 'saved locally' in capsys.readouterr().out
