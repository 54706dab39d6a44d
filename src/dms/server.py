"""HTTP transport that turns PUT /postpone requests into switch postpones."""

from __future__ import annotations

import logging
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from .config import DEFAULT_HTTP, parse_listen_address
from .switch import PostponeRequest, Postponer

POSTPONE_PATH = "/postpone"
SOURCE_PARAMETER = "source"

# Largest form body read from a postpone request
MAX_BODY_BYTES = 10 << 20


def make_handler(postponer: Postponer, log: logging.Logger) -> type[BaseHTTPRequestHandler]:
    """Build a request handler class bound to a postponer."""

    class PostponeHandler(BaseHTTPRequestHandler):
        def log_message(self, format, *args):
            log.debug(f"{self.address_string()} - {format % args}")

        def _respond(self, status: int, body: bytes = b""):
            self.send_response(status)
            self.send_header("Content-Length", str(len(body)))
            if body:
                self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.end_headers()
            if body:
                self.wfile.write(body)

        def _content_length(self) -> int:
            value = self.headers.get("Content-Length") or "0"
            try:
                length = int(value)
            except ValueError:
                length = -1
            if length < 0:
                raise ValueError(f"invalid Content-Length: {value}")
            return length

        def _source(self, query: str, length: int) -> str:
            params = parse_qs(query)

            if length:
                body = self.rfile.read(length).decode("utf-8")
                if self.headers.get_content_type() == "application/x-www-form-urlencoded":
                    params.update(parse_qs(body, strict_parsing=True))

            return params.get(SOURCE_PARAMETER, [""])[0]

        def do_PUT(self):
            url = urlsplit(self.path)
            if url.path != POSTPONE_PATH:
                self._respond(HTTPStatus.NOT_FOUND)
                return

            try:
                length = self._content_length()
            except ValueError as e:
                self.close_connection = True
                self._respond(HTTPStatus.BAD_REQUEST, str(e).encode("utf-8"))
                return

            if length > MAX_BODY_BYTES:
                self.close_connection = True
                self._respond(HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
                return

            try:
                source = self._source(url.query, length)
            except ValueError as e:
                self._respond(HTTPStatus.BAD_REQUEST, str(e).encode("utf-8"))
                return

            host, port = self.client_address[:2]
            request = PostponeRequest(source=source, remote_addr=f"{host}:{port}")

            if postponer.postpone(request):
                self._respond(HTTPStatus.OK)
            else:
                self._respond(HTTPStatus.SERVICE_UNAVAILABLE)

        def _not_allowed(self):
            if urlsplit(self.path).path != POSTPONE_PATH:
                self._respond(HTTPStatus.NOT_FOUND)
                return
            self.send_response(HTTPStatus.METHOD_NOT_ALLOWED)
            self.send_header("Allow", "PUT")
            self.send_header("Content-Length", "0")
            self.end_headers()

        do_GET = _not_allowed
        do_POST = _not_allowed
        do_DELETE = _not_allowed
        do_PATCH = _not_allowed

    return PostponeHandler


class PostponeServer:
    """Serves the postpone endpoint on a background thread."""

    def __init__(
        self,
        postponer: Postponer,
        address: str = DEFAULT_HTTP,
        logger: Optional[logging.Logger] = None,
    ):
        self.postponer = postponer
        self.logger = logger or logging.getLogger("dms")
        self.host, self.port = parse_listen_address(address)
        self._httpd: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> str:
        """The bound address, or the configured one before start()."""
        if self._httpd is not None:
            host, port = self._httpd.server_address[:2]
            return f"{host}:{port}"
        return f"{self.host}:{self.port}"

    @property
    def url(self) -> str:
        host, _, port = self.address.rpartition(":")
        if host in ("", "0.0.0.0"):
            host = "localhost"
        return f"http://{host}:{port}{POSTPONE_PATH}"

    def start(self):
        """Bind the listener and serve in the background. Bind errors propagate."""
        handler = make_handler(self.postponer, self.logger)
        self._httpd = ThreadingHTTPServer((self.host, self.port), handler)
        self._httpd.daemon_threads = True

        self.logger.info(f"PUT http://{self.address}{POSTPONE_PATH} to postpone triggering actions")

        self._thread = threading.Thread(
            target=self._serve,
            name="dms-http",
            daemon=True,
        )
        self._thread.start()

    def _serve(self):
        try:
            self._httpd.serve_forever()
        except Exception as e:
            self.logger.error(f"HTTP server error: {e}")

    def stop(self):
        """Shut the listener down and wait for the serving thread."""
        if self._httpd is None:
            return

        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread:
            self._thread.join(timeout=5)
        self._httpd = None
        self._thread = None
