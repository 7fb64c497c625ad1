"""Rendering of the workbench page served at ``/``."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

CONFIGURATION_PLACEHOLDER = "{{WORKBENCH_WEB_CONFIGURATION}}"
EXTENSIONS_PLACEHOLDER = "{{WORKBENCH_BUILTIN_EXTENSIONS}}"
WEBVIEW_ENDPOINT_PLACEHOLDER = "{{WEBVIEW_ENDPOINT}}"
REMOTE_USER_DATA_PLACEHOLDER = "{{REMOTE_USER_DATA_URI}}"

FOLDER_QUERY_KEY = "gh"

_PLACEHOLDER_RE = re.compile(
    "|".join(
        re.escape(p)
        for p in (
            CONFIGURATION_PLACEHOLDER,
            EXTENSIONS_PLACEHOLDER,
            WEBVIEW_ENDPOINT_PLACEHOLDER,
            REMOTE_USER_DATA_PLACEHOLDER,
        )
    )
)

SAMPLE_FOLDER_URI = {"scheme": "memfs", "path": "/sample-folder"}


def folder_path_from_query(query: Mapping[str, Sequence[str]]) -> str | None:
    """Return the remote folder path requested with ``?gh=``, rooted at ``/``."""
    values = query.get(FOLDER_QUERY_KEY)
    if not values or not values[0]:
        return None
    path = values[0]
    if not path.startswith("/"):
        path = "/" + path
    return path


def build_web_configuration(folder_path: str | None, public_url: str) -> dict[str, Any]:
    """Build the configuration object the workbench reads on startup.

    With a *folder_path* the workbench opens that path from GitHub,
    otherwise it opens the in-memory sample folder.
    """
    if folder_path:
        folder_uri = {"scheme": "github", "authority": "HEAD", "path": folder_path}
    else:
        folder_uri = dict(SAMPLE_FOLDER_URI)
    return {
        "folderUri": folder_uri,
        "builtinExtensionsServiceUrl": f"{public_url}/static-extension",
    }


def escape_attribute(value: str) -> str:
    """Escape *value* for a double-quoted HTML attribute."""
    return value.replace('"', "&quot;")


def _attribute_json(value: object) -> str:
    return escape_attribute(json.dumps(value, separators=(",", ":"), ensure_ascii=False))


def render_workbench(
    template: str,
    configuration: Mapping[str, Any],
    extensions: Sequence[Mapping[str, Any]],
) -> str:
    """Substitute the configuration and extension catalog into *template*.

    All placeholders are replaced in a single pass, so text inside one
    payload is never mistaken for another placeholder.  Replacements come
    from a function and are inserted literally; ``$`` or ``\\`` sequences in
    the JSON are never read as back-references.
    """
    values = {
        CONFIGURATION_PLACEHOLDER: _attribute_json(configuration),
        EXTENSIONS_PLACEHOLDER: _attribute_json(list(extensions)),
        WEBVIEW_ENDPOINT_PLACEHOLDER: "",
        REMOTE_USER_DATA_PLACEHOLDER: "",
    }
    return _PLACEHOLDER_RE.sub(lambda match: values[match.group(0)], template)
