"""HTTP server for the browser workbench and its built-in extensions."""

from __future__ import annotations

import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import ParseResult, parse_qs, unquote, urlparse

from codeweb.core.callbacks import (
    REQUEST_ID_KEY,
    CallbackRelay,
    build_callback_descriptor,
    first_query_value,
)
from codeweb.core.config import ServerConfig
from codeweb.core.extensions import ExtensionCatalog
from codeweb.core.workbench import (
    build_web_configuration,
    folder_path_from_query,
    render_workbench,
)
from codeweb.errors import BadRequest, NotFound, RequestError
from codeweb.server.files import join_under, serve_file

logger = logging.getLogger(__name__)

STATIC_PREFIX = "/static/"
STATIC_EXTENSION_PREFIX = "/static-extension/"

WEB_APP_MANIFEST = {
    "name": "Code Web - OSS",
    "short_name": "Code Web - OSS",
    "start_url": "/",
    "lang": "en-US",
    "display": "standalone",
}


# ---------------------------------------------------------------------------
# Request handler
# ---------------------------------------------------------------------------


def _make_handler_class(
    config: ServerConfig, catalog: ExtensionCatalog, relay: CallbackRelay
) -> type:
    """Create a handler class bound to one configuration, catalog and relay."""

    class WorkbenchHandler(BaseHTTPRequestHandler):
        _config: ServerConfig = config
        _catalog: ExtensionCatalog = catalog
        _relay: CallbackRelay = relay

        # Route access logging through the logging module instead of stderr
        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
            logger.debug("%s - %s", self.address_string(), format % args)

        def do_GET(self) -> None:  # noqa: N802
            self._response_started = False
            try:
                self._route(urlparse(self.path))
            except RequestError as exc:
                self._send_error_text(exc.status, exc.message)
            except Exception:
                logger.exception("Error while handling %s", self.path)
                self._send_error_text(500, "Internal Server Error.")

        def send_response(self, code: int, message: str | None = None) -> None:
            self._response_started = True
            super().send_response(code, message)

        # ---------------------------------------------------------------
        # Routing
        # ---------------------------------------------------------------

        def _route(self, parsed: ParseResult) -> None:
            path = parsed.path
            query = parse_qs(parsed.query, keep_blank_values=True)

            if path == "/favicon.ico":
                self._serve_app_file(self._config.favicon)
            elif path == "/manifest.json":
                self._send_body(200, "application/json", json.dumps(WEB_APP_MANIFEST))
            elif path.startswith(STATIC_PREFIX):
                relative = unquote(path[len(STATIC_PREFIX) :])
                root = self._config.app_root
                serve_file(self, root, join_under(root, relative))
            elif path.startswith(STATIC_EXTENSION_PREFIX):
                relative = unquote(path[len(STATIC_EXTENSION_PREFIX) :])
                root = self._config.extensions_root
                serve_file(self, root, join_under(root, relative))
            elif path == "/":
                self._handle_root(query)
            elif path == "/callback":
                self._handle_callback(query)
            elif path == "/fetch-callback":
                self._handle_fetch_callback(query)
            else:
                raise NotFound("Not found.")

        # ---------------------------------------------------------------
        # Endpoint handlers
        # ---------------------------------------------------------------

        def _handle_root(self, query: dict[str, list[str]]) -> None:
            folder_path = folder_path_from_query(query)
            extensions = self._catalog.result()
            configuration = build_web_configuration(folder_path, self._config.public_url)
            template = self._config.workbench_template.read_text(encoding="utf-8")
            html = render_workbench(template, configuration, extensions)
            self._send_body(200, "text/html", html)

        def _handle_callback(self, query: dict[str, list[str]]) -> None:
            request_id, descriptor = build_callback_descriptor(query)
            self._relay.register(request_id, descriptor)
            logger.debug("Registered callback for request %s", request_id)
            self._serve_app_file(self._config.callback_page, {"Content-Type": "text/html"})

        def _handle_fetch_callback(self, query: dict[str, list[str]]) -> None:
            request_id = first_query_value(query, REQUEST_ID_KEY)
            if not request_id:
                raise BadRequest("Bad request.")
            descriptor = self._relay.consume(request_id)
            self._send_body(200, "text/json", descriptor or "")

        # ---------------------------------------------------------------
        # Response helpers
        # ---------------------------------------------------------------

        def _serve_app_file(self, path, extra_headers: dict[str, str] | None = None) -> None:
            serve_file(self, self._config.app_root, path, extra_headers)

        def _send_body(self, status: int, content_type: str, body: str) -> None:
            data = body.encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def _send_error_text(self, status: int, message: str) -> None:
            if self._response_started:
                # Too late for a status line; drop the connection instead.
                self.close_connection = True
                return
            self._send_body(status, "text/plain", message)

    return WorkbenchHandler


# ---------------------------------------------------------------------------
# Server factory
# ---------------------------------------------------------------------------


def create_server(
    config: ServerConfig,
    catalog: ExtensionCatalog,
    relay: CallbackRelay | None = None,
    *,
    host: str | None = None,
    port: int | None = None,
) -> ThreadingHTTPServer:
    """Create an HTTP server serving the workbench described by *config*.

    Parameters
    ----------
    config:
        Resolved server configuration.
    catalog:
        Extension catalog; the server waits on it only when rendering ``/``.
    relay:
        Callback store shared by ``/callback`` and ``/fetch-callback``.  A
        fresh one is created when omitted.
    host, port:
        Bind address; default to ``config.bind`` and ``config.local_port``.
    """
    if relay is None:
        relay = CallbackRelay()
    handler_cls = _make_handler_class(config, catalog, relay)
    address = (
        host if host is not None else config.bind,
        port if port is not None else config.local_port,
    )
    server = ThreadingHTTPServer(address, handler_cls)
    return server
