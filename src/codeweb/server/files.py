"""Serving files from disk with root containment and weak ETags."""

from __future__ import annotations

import logging
import os
import shutil
import stat
from collections.abc import Mapping
from http.server import BaseHTTPRequestHandler
from pathlib import Path

from codeweb.errors import BadRequest, NotFound

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024

TEXT_MIME_TYPES = {
    ".html": "text/html",
    ".js": "text/javascript",
    ".json": "application/json",
    ".css": "text/css",
    ".svg": "image/svg+xml",
}

MEDIA_MIME_TYPES = {
    ".bmp": "image/bmp",
    ".gif": "image/gif",
    ".ico": "image/x-icon",
    ".jpe": "image/jpg",
    ".jpeg": "image/jpg",
    ".jpg": "image/jpg",
    ".png": "image/png",
    ".tga": "image/x-tga",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".woff": "application/font-woff",
}

DEFAULT_MIME_TYPE = "text/plain"


def join_under(root: str | Path, relative: str) -> str:
    """Join a decoded request path below *root* and normalize it.

    Leading separators are dropped first so that an absolute *relative*
    cannot replace *root*.  The result is not checked; see
    :func:`contained_path`.
    """
    return os.path.normpath(os.path.join(root, relative.lstrip("/\\")))


def contained_path(root: str | Path, file_path: str | Path) -> str:
    """Return *file_path* normalized, if it lies strictly inside *root*.

    Raises:
        BadRequest: If the normalized path is *root* itself or outside it.
    """
    normalized = os.path.normpath(file_path)
    prefix = os.path.normpath(root) + os.sep
    if not normalized.startswith(prefix):
        raise BadRequest("Bad request.")
    return normalized


def compute_etag(st: os.stat_result) -> str:
    """Weak validator built from inode, size and mtime (integer milliseconds)."""
    return f'W/"{st.st_ino}-{st.st_size}-{st.st_mtime_ns // 1_000_000}"'


def content_type_for(path: str | Path) -> str:
    ext = os.path.splitext(str(path))[1]
    return TEXT_MIME_TYPES.get(ext) or MEDIA_MIME_TYPES.get(ext.lower()) or DEFAULT_MIME_TYPE


def serve_file(
    handler: BaseHTTPRequestHandler,
    root: str | Path,
    file_path: str | Path,
    extra_headers: Mapping[str, str] | None = None,
) -> None:
    """Answer *handler*'s request with the file at *file_path*.

    The path must resolve inside *root*, otherwise :class:`BadRequest` is
    raised before the filesystem is touched.  A request whose
    ``If-None-Match`` equals the file's ETag gets a bare 304.  Headers in
    *extra_headers* override the computed ones.

    Raises:
        BadRequest: If the path escapes *root*.
        NotFound: If the file is missing or not a regular file.
    """
    path = contained_path(root, file_path)

    try:
        st = os.stat(path)
    except (OSError, ValueError):
        # ValueError: the decoded path holds a NUL byte.
        raise NotFound("Not found") from None
    if not stat.S_ISREG(st.st_mode):
        raise NotFound("Not found")

    etag = compute_etag(st)
    if handler.headers.get("If-None-Match") == etag:
        handler.send_response(304)
        handler.end_headers()
        return

    headers = {
        "Content-Type": content_type_for(path),
        "ETag": etag,
        "Content-Length": str(st.st_size),
    }
    if extra_headers:
        headers.update(extra_headers)

    try:
        fh = open(path, "rb")
    except (OSError, ValueError):
        raise NotFound("Not found") from None

    with fh:
        handler.send_response(200)
        for name, value in headers.items():
            handler.send_header(name, value)
        handler.end_headers()
        try:
            shutil.copyfileobj(fh, handler.wfile, _CHUNK_SIZE)
        except OSError as exc:
            # Headers are already out; the client sees a truncated body.
            logger.warning("Streaming %s was interrupted: %s", path, exc)
            handler.close_connection = True
