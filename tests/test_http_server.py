#!/usr/bin/env python3
"""End-to-end tests: RemoteHttpBackend talking to a live TableServer."""

import http.client
import json
import threading
from urllib.parse import urlparse

import pytest
import requests

from yousei_note.backends import RemoteHttpBackend
from yousei_note.services.http_server import TableServer


@pytest.fixture
def server(service):
    httpd = TableServer(('127.0.0.1', 0), service)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_port}/exec"
    httpd.shutdown()
    httpd.server_close()
    thread.join(timeout=5)


def test_get_uses_query_string(server):
    response = requests.get(server, params={'action': 'ping'}, timeout=5)
    assert response.status_code == 200
    assert response.json()['data']['message'] == 'pong'


def test_post_body_overrides_query(server):
    response = requests.post(
        server,
        params={'action': 'ping'},
        json={'action': 'setItem', 'key': 'k', 'value': {'a': 1}, 'storeId': 'KRB01'},
        timeout=5,
    )
    assert response.json()['data']['saved'] is True


def test_errors_are_http_200(server):
    response = requests.get(server, params={'action': 'nope'}, timeout=5)
    assert response.status_code == 200
    assert response.json()['status'] == 'error'


def test_malformed_body(server):
    response = requests.post(server, data=b'{not json', timeout=5,
                             headers={'Content-Type': 'application/json'})
    assert response.status_code == 200
    assert response.json()['status'] == 'error'
    assert 'Malformed' in response.json()['error']


def test_backend_round_trip(server):
    backend = RemoteHttpBackend(timeout_ms=5000)
    assert backend.init(server, 'KRB01')

    value = {'sales': 12, 'memo': '晴れ'}
    assert backend.save('yousei:KRB01:2024-05-01', value)
    assert backend.load('yousei:KRB01:2024-05-01') == value
    assert [record.key for record in backend.list('yousei:')] == ['yousei:KRB01:2024-05-01']
    assert backend.delete('yousei:KRB01:2024-05-01')
    assert backend.load('yousei:KRB01:2024-05-01') is None
    assert backend.get_sync_status().connected


def test_invalid_content_length(server):
    parsed = urlparse(server)
    conn = http.client.HTTPConnection(parsed.hostname, parsed.port, timeout=5)
    try:
        conn.putrequest('POST', parsed.path)
        conn.putheader('Content-Length', 'abc')
        conn.endheaders()
        response = conn.getresponse()
        payload = json.loads(response.read().decode('utf-8'))
    finally:
        conn.close()

    assert response.status == 200
    assert payload['status'] == 'error'
    assert payload['error'] == 'Invalid Content-Length'
