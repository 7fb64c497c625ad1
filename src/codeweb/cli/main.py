"""CLI entry point."""

from __future__ import annotations

import logging
import os

import click

DEBUG_ENV = "CODEWEB_DEBUG"


def configure_logging() -> None:
    """Send log records to stderr; ``CODEWEB_DEBUG=1`` enables debug output."""
    level = logging.DEBUG if os.environ.get(DEBUG_ENV) else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


@click.group()
def cli() -> None:
    """codeweb: serve the browser workbench and its built-in extensions."""
    configure_logging()


# ---------------------------------------------------------------------------
# Register command modules (must be after cli group is defined)
# ---------------------------------------------------------------------------
from codeweb.cli import serve_cmd as _serve_cmd  # noqa: E402, F401

if __name__ == "__main__":
    cli()
