"""Shared test fixtures."""

from __future__ import annotations

import json
import socket
import threading
from http.client import HTTPConnection
from pathlib import Path
from urllib.parse import urlsplit

import pytest

from codeweb.core.callbacks import CallbackRelay
from codeweb.core.config import ServerConfig
from codeweb.core.extensions import ExtensionCatalog, discover_extensions
from codeweb.server.server import create_server

WORKBENCH_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head>
  <meta id="vscode-workbench-web-configuration" data-settings="{{WORKBENCH_WEB_CONFIGURATION}}">
  <meta id="vscode-workbench-builtin-extensions" data-settings="{{WORKBENCH_BUILTIN_EXTENSIONS}}">
  <meta id="vscode-workbench-webview-endpoint" data-settings="{{WEBVIEW_ENDPOINT}}">
  <meta id="vscode-remote-user-data-uri" data-settings="{{REMOTE_USER_DATA_URI}}">
</head>
<body></body>
</html>
"""

CALLBACK_PAGE = "<!DOCTYPE html><html><body>You can close this page now.</body></html>\n"


def write_extension(
    extensions_root: Path, folder: str, package_json: dict | str, files: dict[str, str] | None = None
) -> Path:
    """Create an extension folder with a package.json and optional extra files."""
    ext_dir = extensions_root / folder
    ext_dir.mkdir(parents=True)
    raw = package_json if isinstance(package_json, str) else json.dumps(package_json)
    (ext_dir / "package.json").write_text(raw)
    for rel, content in (files or {}).items():
        target = ext_dir / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    return ext_dir


@pytest.fixture()
def make_extension():
    """Return :func:`write_extension` for tests that build their own extensions folder."""
    return write_extension


@pytest.fixture()
def app_root(tmp_path: Path) -> Path:
    """Build a minimal editor checkout: template, favicon, callback page, extensions.

    The checkout lives in ``tmp_path/app``; ``tmp_path/app-secrets`` is a
    sibling directory whose name shares the checkout's prefix.
    """
    root = tmp_path / "app"
    template = root / "src" / "vs" / "code" / "browser" / "workbench" / "workbench-dev.html"
    template.parent.mkdir(parents=True)
    template.write_text(WORKBENCH_TEMPLATE)

    favicon = root / "resources" / "win32" / "code.ico"
    favicon.parent.mkdir(parents=True)
    favicon.write_bytes(b"\x00\x00\x01\x00icon")

    callback = root / "resources" / "serverless" / "callback.html"
    callback.parent.mkdir(parents=True)
    callback.write_text(CALLBACK_PAGE)

    (root / "out").mkdir()
    (root / "out" / "main.css").write_text("body { margin: 0; }\n")

    extensions = root / "extensions"
    write_extension(
        extensions,
        "foo",
        {"name": "foo", "browser": "./dist/browser/extension"},
        {
            "bar.js": "let a = 1;",
            "dist/browser/extension.js": "exports.activate = () => {};\n",
            "README.md": "# foo\n",
            "package.nls.json": "{}",
        },
    )
    write_extension(extensions, "native", {"name": "native", "main": "./out/extension"})

    secrets = tmp_path / "app-secrets"
    secrets.mkdir()
    (secrets / "token.txt").write_text("secret")
    (tmp_path / "outside.txt").write_text("outside")

    return root


@pytest.fixture()
def server_config(app_root: Path) -> ServerConfig:
    return ServerConfig(
        app_root=app_root,
        port=8080,
        local_port=8080,
        scheme="https",
        host="localhost",
        authority="example.test:8443",
    )


def _get_free_port() -> int:
    """Find an available TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture()
def relay() -> CallbackRelay:
    return CallbackRelay()


@pytest.fixture()
def workbench_server(server_config: ServerConfig, relay: CallbackRelay):
    """Start a server on a random port, yield (base_url, config, relay)."""
    catalog = ExtensionCatalog.from_extensions(discover_extensions(server_config.extensions_root))
    host = "127.0.0.1"
    port = _get_free_port()
    server = create_server(server_config, catalog, relay, host=host, port=port)

    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield f"http://{host}:{port}", server_config, relay

    server.shutdown()
    server.server_close()


@pytest.fixture()
def http_get(workbench_server):
    """Return a helper that sends a raw GET and returns (status, headers, body).

    The request target is sent exactly as given, so dot segments and
    percent-escapes reach the server untouched.

    Usage::

        status, headers, body = http_get("/static/out/main.css")
    """
    base_url, _config, _relay = workbench_server
    netloc = urlsplit(base_url).netloc

    def _get(target: str, headers: dict[str, str] | None = None) -> tuple[int, dict[str, str], bytes]:
        conn = HTTPConnection(netloc, timeout=10)
        try:
            conn.request("GET", target, headers=headers or {})
            resp = conn.getresponse()
            body = resp.read()
            return resp.status, dict(resp.getheaders()), body
        finally:
            conn.close()

    return _get
