"""``codeweb serve`` command."""

from __future__ import annotations

import errno
import logging
import socket

import click

from codeweb.cli.main import cli

logger = logging.getLogger(__name__)


def _find_free_port(host: str, near: int) -> int | None:
    """Return an available port close to *near*, or ``None`` on failure."""
    for candidate in range(near + 1, near + 20):
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((host, candidate))
                return candidate
        except OSError:
            continue
    return None


@cli.command("serve")
@click.option("--scheme", default=None, help="Protocol of the public URL (http or https). Env: VSCODE_SCHEME.")
@click.option("--host", default=None, help="Public host name used in URLs (default: localhost).")
@click.option("--port", default=None, type=int, help="Public port. Env: PORT. Defaults to 8080.")
@click.option("--local-port", default=None, type=int, help="Port to listen on, if different from --port. Env: LOCAL_PORT.")
@click.option("--bind", default=None, help="Address to listen on (default: 127.0.0.1).")
@click.option(
    "--app-root",
    default=None,
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Editor checkout to serve. Env: CODEWEB_APP_ROOT. Defaults to the current directory.",
)
@click.option("--no-launch", is_flag=True, help="Do not open the workbench in a browser.")
def serve_cmd(
    scheme: str | None,
    host: str | None,
    port: int | None,
    local_port: int | None,
    bind: str | None,
    app_root: str | None,
    no_launch: bool,
) -> None:
    """Serve the browser workbench of an editor checkout.

    \b
    Example:
      codeweb serve --scheme https --host example.com --port 8080 --local-port 30000
    """
    from codeweb.core.callbacks import CallbackRelay
    from codeweb.core.config import load_server_config
    from codeweb.core.extensions import ExtensionCatalog
    from codeweb.server.server import create_server

    try:
        config = load_server_config(
            app_root=app_root,
            port=port,
            local_port=local_port,
            scheme=scheme,
            host=host,
            bind=bind,
        )
    except ValueError as exc:
        raise click.ClickException(str(exc)) from None

    catalog = ExtensionCatalog().start(config.extensions_root)

    try:
        server = create_server(config, catalog, CallbackRelay())
    except OSError as exc:
        if exc.errno == errno.EADDRINUSE:
            alt = _find_free_port(config.bind, config.local_port)
            hint = f"  codeweb serve --local-port {alt}" if alt else "  codeweb serve --local-port <PORT>"
            raise click.ClickException(
                f"Port {config.local_port} is already in use.\n"
                f"Stop the other process, or start on a free port:\n\n{hint}"
            ) from None
        raise click.ClickException(str(exc)) from None

    if config.local_port != config.port:
        click.echo(f"Operating location at http://{config.bind}:{config.local_port}")
    click.echo(f"Web UI available at   {config.public_url}")
    click.echo("Press Ctrl+C to stop.")

    if not no_launch:
        import webbrowser

        try:
            webbrowser.open(config.launch_url)
        except webbrowser.Error as exc:
            logger.warning("Could not open a browser: %s", exc)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
