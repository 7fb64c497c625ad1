"""Tests for ``codeweb serve``."""

from __future__ import annotations

import errno
from pathlib import Path

import pytest
from click.testing import CliRunner

from codeweb.cli.main import cli


class FakeServer:
    def __init__(self) -> None:
        self.served = False
        self.closed = False

    def serve_forever(self) -> None:
        self.served = True

    def server_close(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_server(monkeypatch: pytest.MonkeyPatch):
    """Replace create_server and record the config it was called with."""
    server = FakeServer()
    calls: list = []

    def _create_server(config, catalog, relay=None, **kwargs):
        calls.append((config, catalog, relay))
        return server

    monkeypatch.setattr("codeweb.server.server.create_server", _create_server)
    return server, calls


@pytest.fixture()
def opened_urls(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    urls: list[str] = []
    monkeypatch.setattr("webbrowser.open", lambda url: urls.append(url))
    return urls


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("PORT", "LOCAL_PORT", "VSCODE_SCHEME", "VSCODE_AUTHORITY", "CODEWEB_APP_ROOT"):
        monkeypatch.delenv(name, raising=False)


class TestServeCommand:
    def test_starts_server_and_opens_browser(
        self, app_root: Path, fake_server, opened_urls, clean_env
    ) -> None:
        server, calls = fake_server

        result = CliRunner().invoke(cli, ["serve", "--app-root", str(app_root)])

        assert result.exit_code == 0, result.output
        assert "Web UI available at   http://localhost:8080" in result.output
        assert "Operating location" not in result.output
        assert opened_urls == ["http://localhost:8080"]
        assert server.served and server.closed

        config, catalog, relay = calls[0]
        assert config.app_root == app_root
        assert relay is not None
        assert [e["extensionPath"] for e in catalog.result(timeout=10)] == ["foo"]

    def test_flags(self, app_root: Path, fake_server, opened_urls, clean_env) -> None:
        _server, calls = fake_server

        result = CliRunner().invoke(
            cli,
            [
                "serve",
                "--app-root", str(app_root),
                "--scheme", "https",
                "--host", "example.com",
                "--port", "8443",
                "--local-port", "30000",
                "--no-launch",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Operating location at http://127.0.0.1:30000" in result.output
        assert "Web UI available at   https://example.com:8443" in result.output
        assert opened_urls == []
        config = calls[0][0]
        assert (config.port, config.local_port) == (8443, 30000)

    def test_environment(self, app_root: Path, fake_server, opened_urls, clean_env) -> None:
        result = CliRunner().invoke(
            cli,
            ["serve", "--no-launch"],
            env={
                "CODEWEB_APP_ROOT": str(app_root),
                "PORT": "9000",
                "VSCODE_AUTHORITY": "proxy.example",
                "VSCODE_SCHEME": "https",
            },
        )

        assert result.exit_code == 0, result.output
        assert "Web UI available at   https://proxy.example" in result.output
        assert fake_server[1][0][0].port == 9000

    def test_invalid_port_env(self, app_root: Path, fake_server, clean_env) -> None:
        result = CliRunner().invoke(
            cli, ["serve", "--app-root", str(app_root), "--no-launch"], env={"PORT": "x"}
        )

        assert result.exit_code == 1
        assert "Invalid PORT" in result.output

    def test_port_in_use(
        self, app_root: Path, monkeypatch: pytest.MonkeyPatch, clean_env
    ) -> None:
        def _busy(*args, **kwargs):
            raise OSError(errno.EADDRINUSE, "Address already in use")

        monkeypatch.setattr("codeweb.server.server.create_server", _busy)

        result = CliRunner().invoke(cli, ["serve", "--app-root", str(app_root), "--no-launch"])

        assert result.exit_code == 1
        assert "Port 8080 is already in use" in result.output
        assert "codeweb serve --local-port" in result.output

    def test_missing_app_root(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["serve", "--app-root", str(tmp_path / "nope")])

        assert result.exit_code == 2
