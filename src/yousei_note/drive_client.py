#!/usr/bin/env python3
"""Google Drive API client for Yousei Note."""

import json
import logging
import re
import secrets
import time
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import certifi
import requests

from .errors import AuthError, TransportError
from .retry import retry_on_failure

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'


def _is_transient(error: Exception) -> bool:
    return isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout))


def _escape_query(value: str) -> str:
    """Escape a literal for use inside a Drive ``q`` expression."""
    return value.replace('\\', '\\\\').replace("'", "\\'")


class DriveClient:
    """Client for interacting with the Google Drive v3 REST API."""

    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    API_BASE = "https://www.googleapis.com/drive/v3"
    UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"
    REDIRECT_URI = "http://localhost:8080"
    SCOPES = "https://www.googleapis.com/auth/drive.file"
    REQUEST_TIMEOUT = 30

    def __init__(self, client_id: str, api_key: Optional[str] = None,
                 client_secret: Optional[str] = None,
                 token_data: Optional[Dict[str, Any]] = None,
                 on_token_update: Optional[Callable[[Dict[str, Any]], None]] = None,
                 session: Optional[requests.Session] = None):
        """Initialize Drive client.

        Args:
            client_id: Google OAuth client ID
            api_key: Google API key, sent with every API call
            client_secret: OAuth client secret (installed-app clients)
            token_data: Existing token data (optional)
            on_token_update: Called with new token data after exchange or refresh
            session: HTTP session (a new certifi-verified one if omitted)
        """
        self.client_id = client_id
        self.api_key = api_key
        self.client_secret = client_secret
        self.token_data = token_data or {}
        self.on_token_update = on_token_update
        if session is None:
            session = requests.Session()
            session.verify = certifi.where()  # Explicit certificate validation
        self._session = session
        self.state: Optional[str] = None  # For CSRF protection

    def _sanitize_for_log(self, text: str) -> str:
        """Remove sensitive data from log output."""
        text = re.sub(r'(access_token|refresh_token|code|key)["\']?\s*[:=]\s*["\']?[\w\-\.]+',
                      r'\1=***REDACTED***', text, flags=re.IGNORECASE)
        text = re.sub(r'Bearer\s+[\w\-\.]+', 'Bearer ***REDACTED***', text, flags=re.IGNORECASE)
        return text

    # OAuth

    def get_auth_url(self) -> str:
        """Get OAuth2 authorization URL with CSRF protection."""
        self.state = secrets.token_urlsafe(32)

        params = {
            'client_id': self.client_id,
            'redirect_uri': self.REDIRECT_URI,
            'response_type': 'code',
            'scope': self.SCOPES,
            'access_type': 'offline',
            'prompt': 'consent',
            'state': self.state,
        }
        logger.info("Generated authorization URL with CSRF protection")
        return f"{self.AUTH_URL}?{urlencode(params)}"

    def validate_state(self, received_state: str) -> bool:
        """Validate OAuth state parameter (one-time use)."""
        if not self.state:
            logger.error("No state was generated - possible attack")
            return False

        is_valid = secrets.compare_digest(self.state, received_state or '')
        if not is_valid:
            logger.error("State validation failed - possible CSRF attack")
        self.state = None
        return is_valid

    def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        if self.client_secret:
            data['client_secret'] = self.client_secret

        try:
            response = self._session.post(self.TOKEN_URL, data=data, timeout=self.REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            logger.error(f"Token request failed: {self._sanitize_for_log(str(e))}")
            raise TransportError(f"Token request failed: {e}",
                                 retryable=_is_transient(e)) from e

        if response.status_code != 200:
            logger.error(f"Token request failed with status {response.status_code}")
            logger.error(f"Response: {self._sanitize_for_log(response.text)}")
            raise AuthError(f"Token request failed with status {response.status_code}")

        token_data = response.json()
        token_data['expires_at'] = time.time() + token_data.get('expires_in', 3600)
        return token_data

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for tokens."""
        logger.info("Exchanging authorization code for access token")
        self.token_data = self._token_request({
            'client_id': self.client_id,
            'code': code,
            'redirect_uri': self.REDIRECT_URI,
            'grant_type': 'authorization_code',
        })
        logger.info("Successfully obtained access token")
        self._notify_token_update()
        return self.token_data

    def refresh_token(self) -> Dict[str, Any]:
        """Refresh the access token, keeping the existing refresh token."""
        refresh = self.token_data.get('refresh_token')
        if not refresh:
            raise AuthError("No refresh token available")

        logger.info("Refreshing access token")
        token_data = self._token_request({
            'client_id': self.client_id,
            'refresh_token': refresh,
            'grant_type': 'refresh_token',
        })
        # Google omits the refresh token from refresh responses
        token_data.setdefault('refresh_token', refresh)
        self.token_data = token_data
        logger.info("Successfully refreshed access token")
        self._notify_token_update()
        return self.token_data

    def _notify_token_update(self) -> None:
        if self.on_token_update:
            self.on_token_update(dict(self.token_data))

    @property
    def access_token(self) -> Optional[str]:
        return self.token_data.get('access_token')

    def is_signed_in(self) -> bool:
        """True when an access token is usable now or can be refreshed."""
        if not self.access_token:
            return False
        if self.token_data.get('expires_at', 0) > time.time():
            return True
        return bool(self.token_data.get('refresh_token'))

    def _ensure_token(self) -> None:
        if not self.access_token:
            raise AuthError("Not authenticated. Call authenticate() first.")

        # Refresh if expired or about to expire (5 min buffer)
        if self.token_data.get('expires_at', 0) < time.time() + 300:
            logger.info("Token expired or expiring soon, refreshing...")
            self.refresh_token()

    def _api_request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Make an authenticated API request to a full URL."""
        self._ensure_token()

        headers = kwargs.pop('headers', {})
        headers['Authorization'] = f"Bearer {self.access_token}"
        params = kwargs.pop('params', {})
        if self.api_key:
            params['key'] = self.api_key

        response = self._session.request(method, url, headers=headers, params=params,
                                         timeout=self.REQUEST_TIMEOUT, **kwargs)
        response.raise_for_status()
        return response

    # Files and folders

    def find_folder(self, name: str) -> Optional[str]:
        """Return the id of the oldest folder named ``name``, or None."""
        response = self._api_request('GET', f"{self.API_BASE}/files", params={
            'q': f"name='{_escape_query(name)}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
            'fields': 'files(id, name)',
            'orderBy': 'createdTime',
        })
        files = response.json().get('files', [])
        return files[0]['id'] if files else None

    def create_folder(self, name: str) -> str:
        """Create a top-level folder and return its id."""
        response = self._api_request('POST', f"{self.API_BASE}/files", json={
            'name': name,
            'mimeType': FOLDER_MIME_TYPE,
        }, params={'fields': 'id'})
        folder_id = response.json()['id']
        logger.info(f"Created folder: {name}")
        return folder_id

    def find_file(self, name: str, folder_id: str) -> Optional[Dict[str, Any]]:
        """Return metadata of the first file named ``name`` in the folder, or None."""
        response = self._api_request('GET', f"{self.API_BASE}/files", params={
            'q': f"name='{_escape_query(name)}' and '{_escape_query(folder_id)}' in parents and trashed=false",
            'fields': 'files(id, name)',
            'orderBy': 'createdTime',
        })
        files = response.json().get('files', [])
        return files[0] if files else None

    def list_files(self, folder_id: str) -> List[Dict[str, Any]]:
        """List files in a folder, oldest first, following pagination."""
        all_files: List[Dict[str, Any]] = []
        page_token: Optional[str] = None

        while True:
            params = {
                'q': f"'{_escape_query(folder_id)}' in parents and trashed=false",
                'fields': 'nextPageToken, files(id, name, createdTime, modifiedTime)',
                'orderBy': 'createdTime',
                'pageSize': 1000,
            }
            if page_token:
                params['pageToken'] = page_token

            data = self._api_request('GET', f"{self.API_BASE}/files", params=params).json()
            all_files.extend(data.get('files', []))

            page_token = data.get('nextPageToken')
            if not page_token:
                break
            logger.debug(f"Following pagination, fetched {len(all_files)} files so far")

        return all_files

    @staticmethod
    def _multipart_body(metadata: Dict[str, Any], content: str) -> Tuple[bytes, str]:
        boundary = '-------' + secrets.token_hex(16)
        body = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{content}\r\n"
            f"--{boundary}--"
        )
        return body.encode('utf-8'), f'multipart/related; boundary="{boundary}"'

    @retry_on_failure(max_retries=3, should_retry=_is_transient)
    def create_file(self, name: str, folder_id: str, content: str) -> Dict[str, Any]:
        """Upload a new file into ``folder_id``."""
        body, content_type = self._multipart_body({'name': name, 'parents': [folder_id]}, content)
        response = self._api_request(
            'POST', f"{self.UPLOAD_BASE}/files",
            params={'uploadType': 'multipart'},
            headers={'Content-Type': content_type},
            data=body,
        )
        logger.info(f"Uploaded: {name}")
        return response.json()

    @retry_on_failure(max_retries=3, should_retry=_is_transient)
    def update_file(self, file_id: str, content: str) -> Dict[str, Any]:
        """Replace the content of an existing file."""
        body, content_type = self._multipart_body({}, content)
        response = self._api_request(
            'PATCH', f"{self.UPLOAD_BASE}/files/{file_id}",
            params={'uploadType': 'multipart'},
            headers={'Content-Type': content_type},
            data=body,
        )
        logger.info(f"Updated file: {file_id}")
        return response.json()

    @retry_on_failure(max_retries=3, should_retry=_is_transient)
    def download_file(self, file_id: str) -> str:
        """Return the content of a file as text."""
        response = self._api_request('GET', f"{self.API_BASE}/files/{file_id}",
                                     params={'alt': 'media'})
        return response.text

    def delete_file(self, file_id: str) -> None:
        self._api_request('DELETE', f"{self.API_BASE}/files/{file_id}")
        logger.info(f"Deleted file: {file_id}")
