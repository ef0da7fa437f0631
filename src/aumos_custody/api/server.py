"""Custody REST server.

Uses only Python's built-in ``http.server`` module with no external web
framework dependency.  Each request is served on its own thread so that
concurrent callers exercise the engine's transactional guarantees.

Example
-------
>>> from aumos_custody.api.server import CustodyServer
>>> server = CustodyServer(api=api, host="127.0.0.1", port=8080)
>>> server.start()           # blocks
>>> # Or run in background:
>>> server.start_background()
>>> server.stop()
"""
from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlsplit

from aumos_custody.api.handlers import ACTOR_HEADER

if TYPE_CHECKING:
    from aumos_custody.api.handlers import CustodyApi

logger = logging.getLogger(__name__)


class _CustodyHandler(BaseHTTPRequestHandler):
    """HTTP request handler forwarding to :class:`CustodyApi`."""

    # Set per server instance by CustodyServer.
    api: "CustodyApi"

    def do_GET(self) -> None:  # noqa: N802
        self._dispatch("GET")

    def do_POST(self) -> None:  # noqa: N802
        self._dispatch("POST")

    def do_PATCH(self) -> None:  # noqa: N802
        self._dispatch("PATCH")

    def do_DELETE(self) -> None:  # noqa: N802
        self._dispatch("DELETE")

    def _dispatch(self, method: str) -> None:
        parts = urlsplit(self.path)
        query = dict(parse_qsl(parts.query))
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length > 0 else None
        status, payload = self.api.handle(
            method,
            parts.path,
            query,
            self.headers.get(ACTOR_HEADER),
            body,
        )
        self._send_json(status, payload)

    def _send_json(self, status: int, data: dict[str, object] | None) -> None:
        self.send_response(status)
        if data is None:
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt: str, *args: object) -> None:  # type: ignore[override]
        """Route request logging through the module logger."""
        logger.debug(fmt, *args)


class CustodyServer:
    """Wraps a ``ThreadingHTTPServer`` serving the custody REST API.

    Parameters
    ----------
    api:
        The :class:`CustodyApi` instance answering requests.
    host:
        Bind address (default: ``"127.0.0.1"``).
    port:
        Port to listen on (default: ``8080``).
    """

    def __init__(
        self,
        api: "CustodyApi",
        host: str = "127.0.0.1",
        port: int = 8080,
    ) -> None:
        self._api = api
        self._host = host
        self._port = port
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the server and block until stopped (Ctrl-C)."""
        self._server = self._build_server()
        logger.info("Custody API running at http://%s:%d/", self._host, self._port)
        try:
            self._server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Custody API interrupted; shutting down")
        finally:
            self._server.server_close()

    def start_background(self) -> None:
        """Start the server in a daemon background thread."""
        self._server = self._build_server()
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="custody-api",
        )
        self._thread.start()
        logger.info(
            "Custody API running (background) at http://%s:%d/",
            self._host,
            self._port,
        )

    def stop(self) -> None:
        """Stop the background server."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None

    @property
    def url(self) -> str:
        """The base URL the server listens on."""
        return f"http://{self._host}:{self._port}/"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_server(self) -> ThreadingHTTPServer:
        api = self._api

        class _Handler(_CustodyHandler):
            pass

        _Handler.api = api  # type: ignore[attr-defined]

        return ThreadingHTTPServer((self._host, self._port), _Handler)
