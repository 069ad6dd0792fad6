"""Shared fixtures: an in-process table service behind a fake requests session."""

import itertools
import json
from datetime import datetime, timedelta, timezone

import pytest
import requests

from yousei_note.backends import RemoteHttpBackend
from yousei_note.local_store import LocalStore
from yousei_note.services import RemoteTableService, Workbook


class FakeClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        current = self.now
        self.now += timedelta(seconds=1)
        return current


TOKEN = {'access_token': 'token-1', 'refresh_token': 'refresh-1', 'expires_at': 9999999999}


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 400
        self.reason = 'OK' if self.ok else 'Error'
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        return json.loads(self.text)

    def raise_for_status(self):
        if not self.ok:
            raise requests.exceptions.HTTPError(f"{self.status_code} {self.reason}", response=self)


class ServiceSession:
    """Stands in for ``requests.Session`` and answers from a RemoteTableService."""

    def __init__(self, service):
        self.service = service
        self.verify = True
        self.calls = []
        self.failures = []  # exceptions raised by the next calls, in order

    def request(self, method, url, params=None, data=None, headers=None, timeout=None):
        self.calls.append((method, dict(params or {}), data))
        if self.failures:
            raise self.failures.pop(0)
        payload = dict(params or {})
        if data:
            payload.update(json.loads(data))
        return FakeResponse(self.service.handle(payload))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def workbook():
    book = Workbook()
    yield book
    book.close()


@pytest.fixture
def service(workbook, clock):
    return RemoteTableService(workbook, clock=clock)


@pytest.fixture
def session(service):
    return ServiceSession(service)


@pytest.fixture
def local_store():
    return LocalStore()


@pytest.fixture
def remote_backend(session, local_store):
    backend = RemoteHttpBackend(session=session, local_store=local_store, timeout_ms=2000)
    backend.sleep = lambda seconds: None
    assert backend.init('http://table.test/exec', 'KRB01')
    return backend


@pytest.fixture
def connection_error():
    return requests.exceptions.ConnectionError('connection refused')


class FakeDriveClient:
    """Keeps Drive folders and files in dictionaries."""

    _ids = itertools.count(1)

    def __init__(self, client_id, api_key=None, client_secret=None, token_data=None,
                 on_token_update=None):
        self.client_id = client_id
        self.api_key = api_key
        self.token_data = token_data or {}
        self.folders = {}
        self.files = {}
        self.offline = False

    @property
    def access_token(self):
        return self.token_data.get('access_token')

    def is_signed_in(self):
        return bool(self.access_token)

    def _check(self):
        if self.offline:
            raise requests.exceptions.ConnectionError('offline')

    def find_folder(self, name):
        self._check()
        matches = [folder_id for folder_id, folder_name in self.folders.items() if folder_name == name]
        return matches[0] if matches else None

    def create_folder(self, name):
        self._check()
        folder_id = f"folder-{next(self._ids)}"
        self.folders[folder_id] = name
        return folder_id

    def find_file(self, name, folder_id):
        self._check()
        for file_id, file in self.files.items():
            if file['name'] == name and file['parent'] == folder_id:
                return {'id': file_id, 'name': name}
        return None

    def list_files(self, folder_id):
        self._check()
        return [{'id': file_id, 'name': file['name'], 'modifiedTime': '2024-05-01T00:00:00.000Z'}
                for file_id, file in self.files.items() if file['parent'] == folder_id]

    def create_file(self, name, folder_id, content):
        self._check()
        file_id = f"file-{next(self._ids)}"
        self.files[file_id] = {'name': name, 'parent': folder_id, 'content': content}
        return {'id': file_id}

    def update_file(self, file_id, content):
        self._check()
        self.files[file_id]['content'] = content
        return {'id': file_id}

    def download_file(self, file_id):
        self._check()
        return self.files[file_id]['content']

    def delete_file(self, file_id):
        self._check()
        del self.files[file_id]
