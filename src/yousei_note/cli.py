#!/usr/bin/env python3
"""Command-line utility for Yousei Note."""

import argparse
import http.server
import json
import os
import socketserver
import sys
import webbrowser
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from yousei_note.config import AppPaths, BaseConfig, CloudFileConfig, RemoteHttpConfig, select_backend
from yousei_note.constants import DATA_PREFIX
from yousei_note.credentials import TokenStore
from yousei_note.daemon import SyncDaemon
from yousei_note.drive_client import DriveClient
from yousei_note.errors import AuthError, StorageError
from yousei_note.local_store import LocalStore
from yousei_note.logging_config import setup_logging
from yousei_note.models import OperationResult
from yousei_note.services.http_server import serve
from yousei_note.services.table_service import RemoteTableService
from yousei_note.services.workbook import Workbook

CALLBACK_PORT = 8080


class AuthCallbackHandler(http.server.BaseHTTPRequestHandler):
    """HTTP handler for OAuth callback."""

    auth_code = None
    state = None

    def do_GET(self):
        """Handle GET request for OAuth callback."""
        parsed = urlparse(self.path)
        if parsed.path != '/':
            self.send_response(404)
            self.end_headers()
            return

        params = parse_qs(parsed.query)
        if 'code' in params:
            AuthCallbackHandler.auth_code = params['code'][0]
            AuthCallbackHandler.state = params.get('state', [''])[0]
            self.send_response(200)
            self.send_header('Content-type', 'text/html')
            self.end_headers()
            self.wfile.write(b"<html><body><h1>Authentication successful!</h1>"
                             b"<p>You can close this window now.</p></body></html>")
        else:
            self.send_response(400)
            self.send_header('Content-type', 'text/html')
            self.end_headers()
            self.wfile.write(b"<html><body><h1>Authentication failed!</h1></body></html>")

    def log_message(self, format, *args):
        """Suppress log messages."""
        pass


def browser_authenticator(client: DriveClient) -> Dict[str, Any]:
    """Sign in through the browser and a one-shot local callback server.

    Raises:
        AuthError: If no valid authorization code comes back
    """
    auth_url = client.get_auth_url()
    print("Opening browser for authentication...")
    print(f"If browser doesn't open, visit: {auth_url}")
    webbrowser.open(auth_url)

    print("Waiting for authentication...")
    AuthCallbackHandler.auth_code = None
    AuthCallbackHandler.state = None
    try:
        with socketserver.TCPServer(("", CALLBACK_PORT), AuthCallbackHandler) as httpd:
            httpd.handle_request()
    except OSError as e:
        raise AuthError(f"Could not listen on port {CALLBACK_PORT}: {e}") from e

    if not AuthCallbackHandler.auth_code:
        raise AuthError("No authorization code received")
    if not client.validate_state(AuthCallbackHandler.state):
        raise AuthError("OAuth state mismatch")
    return client.exchange_code(AuthCallbackHandler.auth_code)


def _setup(args) -> Tuple[AppPaths, LocalStore, RemoteHttpConfig, CloudFileConfig]:
    paths = AppPaths()
    setup_logging(level=os.environ.get('YOUSEI_LOG_LEVEL', 'WARNING'), log_file=paths.log_path)
    store = LocalStore(paths.local_store_path)
    token_store = TokenStore(paths.token_path)
    remote_config = RemoteHttpConfig(store)
    cloud_config = CloudFileConfig(store, token_store=token_store,
                                   authenticator=browser_authenticator)
    return paths, store, remote_config, cloud_config


def _connect_remote(remote_config: RemoteHttpConfig) -> bool:
    """Connect the remote backend without starting the auto-sync timer."""
    if not remote_config.is_configured():
        return False
    return remote_config.backend.init(remote_config.get('web_app_url'), remote_config.get('store_id'))


def _active_backend(store: LocalStore, remote_config: RemoteHttpConfig,
                    cloud_config: CloudFileConfig):
    if cloud_config.is_configured() and not cloud_config.auto_init():
        print("✗ Google Drive unavailable, trying other backends")
    if remote_config.is_configured() and not _connect_remote(remote_config):
        print("✗ Remote HTTP storage unavailable, using local storage")
    return select_backend(store, remote_config, cloud_config)


def _parse_value(raw: str) -> Any:
    """Parse a command-line value as JSON, falling back to the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def cmd_auth(args):
    """Authenticate with Google Drive."""
    paths, _, _, cloud_config = _setup(args)

    if args.client_id:
        cloud_config.set('client_id', args.client_id)
    if args.client_secret:
        cloud_config.set('client_secret', args.client_secret)

    client_id = cloud_config.get('client_id')
    if not client_id:
        print("✗ No client ID configured. Pass --client-id or run 'yousei enable-drive'.")
        return 1

    token_store = TokenStore(paths.token_path)
    client = DriveClient(
        client_id,
        api_key=cloud_config.get('api_key') or None,
        client_secret=cloud_config.get('client_secret') or None,
        on_token_update=token_store.save_token,
    )
    try:
        browser_authenticator(client)
    except StorageError as e:
        print(f"✗ Authentication failed: {e}")
        return 1

    print("✓ Authentication successful!")
    return 0


def cmd_status(args):
    """Show storage and sync status."""
    paths, store, remote_config, cloud_config = _setup(args)

    print("Yousei Note Status")
    print("=" * 40)
    print(f"Config Directory: {paths.config_dir}")
    ledger_keys = [key for key in store.keys() if key.startswith(DATA_PREFIX)]
    print(f"Local Ledger Entries: {len(ledger_keys)}")

    print("\nRemote HTTP Storage")
    print(f"  Enabled: {'✓' if remote_config.is_enabled() else '✗'}")
    print(f"  Web App URL: {remote_config.get('web_app_url') or '(not set)'}")
    print(f"  Store ID: {remote_config.get('store_id')}")
    print(f"  Auto Sync: {remote_config.get('auto_sync')} "
          f"(every {int(remote_config.get('sync_interval')) // 1000} seconds)")
    print(f"  Last Sync: {remote_config.get('last_sync') or 'Never'}")
    if _connect_remote(remote_config):
        status = remote_config.backend.get_sync_status()
        print(f"  Connection: {'✓ Connected' if status.connected else '✗ Not connected'}")
        if status.connected:
            print(f"  Remote Items: {status.item_count}")
            print(f"  Remote Last Modified: {status.last_sync or 'Never'}")

    print("\nGoogle Drive Storage")
    print(f"  Enabled: {'✓' if cloud_config.is_enabled() else '✗'}")
    print(f"  Client ID: {cloud_config.get('client_id') or '(not set)'}")
    print(f"  Folder: {cloud_config.get('folder_id') or cloud_config.get('folder_name')}")
    if TokenStore(paths.token_path).load_token():
        print("  Authentication: ✓ Authenticated")
    else:
        print("  Authentication: ✗ Not authenticated")

    return 0


def _print_config(config: BaseConfig) -> None:
    print("Current Configuration:")
    print("=" * 40)
    for key, value in config.get_config().items():
        if key in ('api_key', 'client_secret') and value:
            value = '***'
        print(f"{key} = {value if value not in (None, '') else '(not set)'}")


def cmd_config(args):
    """Configure a backend."""
    _, _, remote_config, cloud_config = _setup(args)
    config = remote_config if args.backend == 'remote' else cloud_config

    if args.list:
        _print_config(config)
        return 0

    if args.set:
        status = 0
        for item in args.set:
            if '=' not in item:
                print(f"Error: Invalid format '{item}'. Use key=value")
                status = 1
                continue

            key, value = item.split('=', 1)
            try:
                config.set(key, value)
            except StorageError as e:
                print(f"✗ {key}: {e}")
                status = 1
                continue
            print(f"✓ Set {key} = {config.get(key)}")
        return status

    print("Use --list to view config or --set key=value to change config")
    return 0


def cmd_enable_remote(args):
    """Enable the remote HTTP backend."""
    _, _, remote_config, _ = _setup(args)
    try:
        success = remote_config.enable(args.url, args.store_id)
    except StorageError as e:
        print(f"✗ {e}")
        return 1

    remote_config.stop_auto_sync()
    if not success:
        print("✗ Connection failed. Check the web app URL.")
        return 1
    print(f"✓ Remote HTTP storage enabled (store {remote_config.get('store_id')})")
    return 0


def cmd_disable_remote(args):
    _, _, remote_config, _ = _setup(args)
    remote_config.disable()
    print("✓ Remote HTTP storage disabled")
    return 0


def cmd_enable_drive(args):
    """Enable the Google Drive backend."""
    _, _, _, cloud_config = _setup(args)
    try:
        success = cloud_config.enable(args.client_id, args.api_key, args.folder_id,
                                      args.client_secret)
    except StorageError as e:
        print(f"✗ {e}")
        return 1

    if not success:
        print("✗ Initialization failed. Check the client ID and API key.")
        return 1
    print(f"✓ Google Drive storage enabled (folder {cloud_config.get('folder_id')})")
    return 0


def cmd_disable_drive(args):
    _, _, _, cloud_config = _setup(args)
    cloud_config.disable()
    print("✓ Google Drive storage disabled. Data will be saved locally.")
    return 0


def cmd_sync(args):
    """Push local ledger entries to the remote HTTP backend."""
    _, _, remote_config, _ = _setup(args)
    if not remote_config.is_enabled():
        print("✗ Remote HTTP storage is not enabled. Run 'yousei enable-remote' first.")
        return 1
    if not _connect_remote(remote_config):
        print("✗ Could not connect to the remote HTTP storage")
        return 1

    report = remote_config.perform_manual_sync()
    if not report.success:
        print("✗ Sync failed")
        return 1
    print(f"✓ Synced {report.synced} of {report.total} entries ({report.failed} failed)")
    return 0 if report.failed == 0 else 1


def cmd_put(args):
    _, store, remote_config, cloud_config = _setup(args)
    backend = _active_backend(store, remote_config, cloud_config)
    try:
        result = backend.save(args.key, _parse_value(args.value))
    except StorageError as e:
        print(f"✗ Save failed: {e}")
        return 1

    if isinstance(result, OperationResult) and result.fallback:
        print(f"✓ Saved {args.key} to local storage only ({result.error})")
    else:
        print(f"✓ Saved {args.key} ({backend.get_storage_type()})")
    return 0


def cmd_get(args):
    _, store, remote_config, cloud_config = _setup(args)
    backend = _active_backend(store, remote_config, cloud_config)
    try:
        value = backend.load(args.key)
    except StorageError as e:
        print(f"✗ Load failed: {e}")
        return 1

    if value is None:
        print(f"✗ {args.key} not found")
        return 1
    print(json.dumps(value, ensure_ascii=False, indent=2))
    return 0


def cmd_list(args):
    _, store, remote_config, cloud_config = _setup(args)
    backend = _active_backend(store, remote_config, cloud_config)
    try:
        records = backend.list(args.prefix or '')
    except StorageError as e:
        print(f"✗ List failed: {e}")
        return 1

    print(f"{backend.get_storage_type()} ({len(records)} entries):")
    print("=" * 60)
    for record in records:
        print(f"{record.key:40s} {record.last_modified or record.timestamp or '':>20s}")
    return 0


def cmd_delete(args):
    _, store, remote_config, cloud_config = _setup(args)
    backend = _active_backend(store, remote_config, cloud_config)
    try:
        removed = backend.delete(args.key)
    except StorageError as e:
        print(f"✗ Delete failed: {e}")
        return 1

    if not removed:
        print(f"✗ {args.key} not found")
        return 1
    print(f"✓ Deleted {args.key}")
    return 0


def cmd_daemon(args):
    """Run auto sync until interrupted."""
    daemon = SyncDaemon(AppPaths(), log_level=os.environ.get('YOUSEI_LOG_LEVEL'))
    return daemon.start()


def cmd_serve(args):
    """Serve the table service over HTTP."""
    paths = AppPaths()
    setup_logging(log_file=paths.log_path)
    workbook = Workbook(args.db or paths.tables_path)
    try:
        serve(RemoteTableService(workbook), host=args.host, port=args.port)
    finally:
        workbook.close()
    return 0


def main(argv: Optional[list] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Yousei Note - storage and sync for the daily ledger'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    auth_parser = subparsers.add_parser('auth', help='Authenticate with Google Drive')
    auth_parser.add_argument('--client-id', help='Google OAuth client ID')
    auth_parser.add_argument('--client-secret', help='Google OAuth client secret')
    auth_parser.set_defaults(func=cmd_auth)

    status_parser = subparsers.add_parser('status', help='Show storage and sync status')
    status_parser.set_defaults(func=cmd_status)

    config_parser = subparsers.add_parser('config', help='Configure a backend')
    config_parser.add_argument('backend', choices=['remote', 'drive'], help='Backend to configure')
    config_parser.add_argument('--list', action='store_true', help='List configuration')
    config_parser.add_argument('--set', nargs='+', help='Set config (key=value)')
    config_parser.set_defaults(func=cmd_config)

    enable_remote_parser = subparsers.add_parser('enable-remote', help='Enable remote HTTP storage')
    enable_remote_parser.add_argument('url', help='Web app URL')
    enable_remote_parser.add_argument('--store-id', help='Store identifier')
    enable_remote_parser.set_defaults(func=cmd_enable_remote)

    disable_remote_parser = subparsers.add_parser('disable-remote', help='Disable remote HTTP storage')
    disable_remote_parser.set_defaults(func=cmd_disable_remote)

    enable_drive_parser = subparsers.add_parser('enable-drive', help='Enable Google Drive storage')
    enable_drive_parser.add_argument('client_id', help='Google OAuth client ID')
    enable_drive_parser.add_argument('api_key', help='Google API key')
    enable_drive_parser.add_argument('--folder-id', help='Drive folder ID (created if omitted)')
    enable_drive_parser.add_argument('--client-secret', help='Google OAuth client secret')
    enable_drive_parser.set_defaults(func=cmd_enable_drive)

    disable_drive_parser = subparsers.add_parser('disable-drive', help='Disable Google Drive storage')
    disable_drive_parser.set_defaults(func=cmd_disable_drive)

    sync_parser = subparsers.add_parser('sync', help='Push local entries to remote HTTP storage')
    sync_parser.set_defaults(func=cmd_sync)

    put_parser = subparsers.add_parser('put', help='Save a value (JSON or plain text)')
    put_parser.add_argument('key')
    put_parser.add_argument('value')
    put_parser.set_defaults(func=cmd_put)

    get_parser = subparsers.add_parser('get', help='Print a stored value')
    get_parser.add_argument('key')
    get_parser.set_defaults(func=cmd_get)

    list_parser = subparsers.add_parser('list', help='List stored entries')
    list_parser.add_argument('prefix', nargs='?', default='', help='Key prefix filter')
    list_parser.set_defaults(func=cmd_list)

    delete_parser = subparsers.add_parser('delete', help='Delete a stored entry')
    delete_parser.add_argument('key')
    delete_parser.set_defaults(func=cmd_delete)

    daemon_parser = subparsers.add_parser('daemon', help='Run auto sync until interrupted')
    daemon_parser.set_defaults(func=cmd_daemon)

    serve_parser = subparsers.add_parser('serve', help='Serve the table service over HTTP')
    serve_parser.add_argument('--host', default='127.0.0.1', help='Bind address')
    serve_parser.add_argument('--port', type=int, default=8000, help='Port')
    serve_parser.add_argument('--db', help='SQLite workbook path')
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
