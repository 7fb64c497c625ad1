"""Server configuration resolved once at startup."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

DEFAULT_PORT = 8080
DEFAULT_SCHEME = "http"
DEFAULT_HOST = "localhost"
DEFAULT_BIND = "127.0.0.1"

APP_ROOT_ENV = "CODEWEB_APP_ROOT"

# Layout of an editor checkout, relative to the app root.
EXTENSIONS_DIR = "extensions"
WORKBENCH_TEMPLATE = Path("src", "vs", "code", "browser", "workbench", "workbench-dev.html")
FAVICON = Path("resources", "win32", "code.ico")
CALLBACK_PAGE = Path("resources", "serverless", "callback.html")


@dataclass(frozen=True)
class ServerConfig:
    app_root: Path
    port: int = DEFAULT_PORT
    local_port: int = DEFAULT_PORT
    scheme: str = DEFAULT_SCHEME
    host: str = DEFAULT_HOST
    authority: str = f"{DEFAULT_HOST}:{DEFAULT_PORT}"
    bind: str = DEFAULT_BIND

    @property
    def extensions_root(self) -> Path:
        return self.app_root / EXTENSIONS_DIR

    @property
    def workbench_template(self) -> Path:
        return self.app_root / WORKBENCH_TEMPLATE

    @property
    def favicon(self) -> Path:
        return self.app_root / FAVICON

    @property
    def callback_page(self) -> Path:
        return self.app_root / CALLBACK_PAGE

    @property
    def public_url(self) -> str:
        """Absolute URL under which browsers reach this server."""
        return f"{self.scheme}://{self.authority}"

    @property
    def launch_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


def load_server_config(
    *,
    app_root: str | Path | None = None,
    port: int | None = None,
    local_port: int | None = None,
    scheme: str | None = None,
    host: str | None = None,
    bind: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServerConfig:
    """Resolve a :class:`ServerConfig` from explicit values and the environment.

    Explicit arguments win over environment variables, which win over the
    defaults.  ``VSCODE_AUTHORITY`` has no flag; when unset the authority is
    ``<host>:<port>``.

    Raises:
        ValueError: If a port taken from the environment is not an integer.
    """
    env = os.environ if environ is None else environ

    resolved_port = port if port is not None else _env_int(env, "PORT", DEFAULT_PORT)
    resolved_local = (
        local_port if local_port is not None else _env_int(env, "LOCAL_PORT", resolved_port)
    )
    resolved_host = host or DEFAULT_HOST
    root = app_root or env.get(APP_ROOT_ENV) or os.getcwd()

    return ServerConfig(
        app_root=Path(os.path.abspath(root)),
        port=resolved_port,
        local_port=resolved_local,
        scheme=scheme or env.get("VSCODE_SCHEME") or DEFAULT_SCHEME,
        host=resolved_host,
        authority=env.get("VSCODE_AUTHORITY") or f"{resolved_host}:{resolved_port}",
        bind=bind or DEFAULT_BIND,
    )


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: '{raw}' is not a port number") from None
