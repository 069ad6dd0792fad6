"""HTTP front end for :class:`RemoteTableService`.

GET requests carry their parameters in the query string; POST requests send
a JSON object body whose fields override query parameters. Every answer is
an HTTP 200 with a JSON envelope.
"""

import http.server
import json
import logging
from typing import Any, Dict, Tuple
from urllib.parse import parse_qsl, urlparse

from .table_service import RemoteTableService

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 10 * 1024 * 1024


class TableRequestHandler(http.server.BaseHTTPRequestHandler):
    """Handles protocol requests for the service attached to the server."""

    server_version = 'YouseiTableService'

    @property
    def service(self) -> RemoteTableService:
        return self.server.service

    def _query_params(self) -> Dict[str, Any]:
        return dict(parse_qsl(urlparse(self.path).query, keep_blank_values=True))

    def _send_json(self, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode('utf-8')
        self.send_response(200)
        self.send_header('Content-Type', 'application/json; charset=utf-8')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _read_body(self) -> Tuple[Dict[str, Any], str]:
        """Return the decoded JSON body and an error message (empty on success)."""
        try:
            length = int(self.headers.get('Content-Length') or 0)
        except ValueError:
            return {}, "Invalid Content-Length"
        if length < 0:
            return {}, "Invalid Content-Length"
        if length > MAX_BODY_BYTES:
            return {}, "Request body too large"
        if length == 0:
            return {}, ''

        raw = self.rfile.read(length)
        try:
            body = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            return {}, f"Malformed JSON body: {e}"
        if not isinstance(body, dict):
            return {}, "Request body must be a JSON object"
        return body, ''

    def do_GET(self):
        self._send_json(self.service.handle(self._query_params()))

    def do_POST(self):
        body, error = self._read_body()
        if error:
            self._send_json(self.service.error(error))
            return
        self._send_json(self.service.handle({**self._query_params(), **body}))

    def log_message(self, format, *args):
        """Route access logs through logging."""
        logger.debug(f"{self.address_string()} - {format % args}")


class TableServer(http.server.HTTPServer):
    """Single-threaded HTTP server; requests are handled one at a time."""

    def __init__(self, server_address: Tuple[str, int], service: RemoteTableService):
        self.service = service
        super().__init__(server_address, TableRequestHandler)


def serve(service: RemoteTableService, host: str = '127.0.0.1', port: int = 8000) -> None:
    """Serve ``service`` until interrupted."""
    with TableServer((host, port), service) as httpd:
        logger.info(f"Table service listening on http://{host}:{httpd.server_port}")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            logger.info("Table service stopping")
