#!/usr/bin/env python3
"""Tests for RemoteHttpBackend against the in-process table service."""

from datetime import date

import pytest
import requests

from conftest import FakeResponse
from yousei_note.backends import RemoteHttpBackend
from yousei_note.errors import NotInitializedError, RemoteError, TransportError, ValidationError


def test_init_pings_service(session):
    backend = RemoteHttpBackend(session=session)
    assert backend.init('http://table.test/exec', 'KRB01')
    assert backend.is_initialized()
    assert backend.is_connected()

    method, params, _ = session.calls[0]
    assert method == 'GET'
    assert params['action'] == 'ping'


def test_init_requires_url():
    with pytest.raises(ValidationError):
        RemoteHttpBackend().init('')


def test_init_rejects_bad_store_id(session):
    with pytest.raises(ValidationError):
        RemoteHttpBackend(session=session).init('http://table.test/exec', 'no spaces')


def test_init_fails_softly_when_unreachable(session, connection_error):
    backend = RemoteHttpBackend(session=session, max_retries=0)
    session.failures.append(connection_error)

    assert backend.init('http://table.test/exec') is False
    assert not backend.is_initialized()


def test_operations_require_init(session):
    backend = RemoteHttpBackend(session=session)
    with pytest.raises(NotInitializedError):
        backend.save('k', 'v')


@pytest.mark.parametrize('value', [
    '{"a":1}',
    {'sales': 12, 'items': [{'name': 'モンブラン', 'count': 3}]},
    [1, 2, 3],
    0,
    False,
])
def test_round_trip(remote_backend, value):
    assert remote_backend.save('yousei:KRB01:2024-05-01', value) is True
    assert remote_backend.load('yousei:KRB01:2024-05-01') == value


def test_writes_post_json_and_reads_use_query(remote_backend, session):
    remote_backend.save('k', {'a': 1})
    remote_backend.load('k')

    post = session.calls[-2]
    get = session.calls[-1]
    assert post[0] == 'POST' and post[1] == {}
    assert get[0] == 'GET' and get[1]['action'] == 'getItem' and get[1]['key'] == 'k'


def test_missing_key_loads_none(remote_backend):
    assert remote_backend.load('never-written') is None


def test_delete(remote_backend):
    remote_backend.save('k', 'v')
    assert remote_backend.delete('k') is True
    assert remote_backend.load('k') is None
    assert remote_backend.delete('k') is False


def test_save_rejects_invalid_data(remote_backend):
    with pytest.raises(ValidationError):
        remote_backend.save('k', None)


def test_list_follows_insertion_order(remote_backend):
    for key in ('yousei:KRB01:2024-05-01', 'note', 'yousei:KRB01:2024-05-02'):
        remote_backend.save(key, key)

    assert [record.key for record in remote_backend.list()] == [
        'yousei:KRB01:2024-05-01', 'note', 'yousei:KRB01:2024-05-02',
    ]
    records = remote_backend.list('yousei:')
    assert [record.key for record in records] == ['yousei:KRB01:2024-05-01', 'yousei:KRB01:2024-05-02']
    assert records[0].last_modified is not None


def test_list_reinserted_key_moves_to_end(remote_backend):
    for key in ('a', 'b', 'c'):
        remote_backend.save(key, key)
    remote_backend.save('b', 'updated')

    remote_backend.delete('a')
    remote_backend.save('a', 'again')
    records = remote_backend.list()
    assert [record.key for record in records] == ['b', 'c', 'a']
    assert records[0].value == 'updated'


def test_get_item_is_fail_soft(remote_backend, session, connection_error):
    remote_backend.save('k', 'v')
    session.failures.extend([connection_error] * 4)

    assert remote_backend.get_item('k') is None
    assert remote_backend.get_item('k') == 'v'


def test_connection_errors_are_retried(remote_backend, session, connection_error):
    delays = []
    remote_backend.sleep = delays.append
    session.failures.extend([connection_error, connection_error])

    assert remote_backend.save('k', 'v') is True
    assert delays == [1.0, 2.0]


def test_retries_exhausted_raise(remote_backend, session, connection_error):
    session.failures.extend([connection_error] * 4)
    with pytest.raises(TransportError):
        remote_backend.save('k', 'v')


def test_http_errors_are_not_retried(remote_backend):
    calls = []

    def respond(method, url, **kwargs):
        calls.append(method)
        return FakeResponse({'status': 'error'}, status_code=500)

    remote_backend.session.request = respond
    with pytest.raises(TransportError) as excinfo:
        remote_backend.save('k', 'v')
    assert excinfo.value.status_code == 500
    assert calls == ['POST']


def test_malformed_response_not_retried(remote_backend):
    calls = []

    def respond(method, url, **kwargs):
        calls.append(method)
        return FakeResponse(text='<html>not json</html>')

    remote_backend.session.request = respond
    with pytest.raises(TransportError, match='Malformed'):
        remote_backend.save('k', 'v')
    assert len(calls) == 1


def test_timeout_is_retried(remote_backend):
    responses = [requests.exceptions.Timeout('slow'), FakeResponse({'status': 'success', 'data': 'v'})]

    def respond(method, url, **kwargs):
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    remote_backend.session.request = respond
    assert remote_backend.get_item('k') == 'v'


def test_error_envelope_raises_remote_error(remote_backend):
    remote_backend.session.request = lambda method, url, **kwargs: FakeResponse(
        {'status': 'error', 'error': 'Sheet locked'})

    with pytest.raises(RemoteError, match='Sheet locked'):
        remote_backend.save('k', 'v')
    with pytest.raises(RemoteError):
        remote_backend.get_item('k')


def test_missing_data_yields_empty_list(remote_backend):
    remote_backend.session.request = lambda method, url, **kwargs: FakeResponse({'status': 'success'})
    assert remote_backend.get_all_items() == []


def test_ledger_queries(remote_backend):
    remote_backend.save('yousei:KRB01:2023-06-03', {'sales': 5})
    remote_backend.save('yousei:KRB01:2024-01-10', {'sales': 2})
    remote_backend.save('yousei:KRB01:2024-01-05', {'sales': 1})

    records = remote_backend.get_date_range(date(2024, 1, 1), '2024-01-31')
    assert [record.value['sales'] for record in records] == [1, 2]

    assert remote_backend.get_previous_year_data(date(2024, 6, 5)) == {'sales': 5}
    assert remote_backend.get_previous_year_data('2025-01-01') is None


def test_create_backup(remote_backend, service):
    remote_backend.save('k', 'v')
    result = remote_backend.create_backup()
    assert result['backupSheet'] == 'KRB01_backup_20240501'
    assert 'KRB01_backup_20240501' in service.workbook.sheet_names()


def test_sync_status(remote_backend):
    remote_backend.save('yousei:KRB01:2024-05-01', '{"a":1}')
    status = remote_backend.get_sync_status()
    assert status.connected
    assert status.item_count == 1
    assert status.sheet_name == 'KRB01'
    assert status.last_sync is not None


def test_sync_status_disconnected(remote_backend, session, connection_error):
    session.failures.extend([connection_error] * 4)
    assert remote_backend.get_sync_status().connected is False
    assert RemoteHttpBackend().get_sync_status().connected is False


def test_sync_with_local_storage(remote_backend, local_store):
    local_store.set_item('yousei:KRB01:2024-05-01', {'sales': 1})
    local_store.set_item('yousei:KRB01:2024-05-02', '{"sales": 2}')
    local_store.set_item('yousei:KRB01:2024-05-03', '')
    local_store.set_item('gasConfig', {'enabled': True})

    report = remote_backend.sync_with_local_storage()
    assert report.success
    assert report.synced == 2
    assert report.failed == 0
    assert report.total == 3

    assert remote_backend.load('yousei:KRB01:2024-05-02') == '{"sales": 2}'
    assert remote_backend.load('gasConfig') is None


def test_sync_counts_failures(remote_backend, local_store, session, connection_error):
    local_store.set_item('yousei:KRB01:2024-05-01', 1)
    local_store.set_item('yousei:KRB01:2024-05-02', 2)
    session.failures.extend([connection_error] * 4)

    report = remote_backend.sync_with_local_storage()
    assert report.success
    assert (report.synced, report.failed) == (1, 1)


def test_sync_without_init():
    report = RemoteHttpBackend().sync_with_local_storage()
    assert not report
