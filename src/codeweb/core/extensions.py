"""Built-in extension discovery.

Each immediate sub-folder of the extensions root is a candidate extension.
Its ``package.json`` is read, normalized so the browser workbench can run
it, and added to an in-memory catalog that lives for the whole process.

Extensions that only declare a native ``main`` entry point cannot run in
the browser and are left out.  Extensions declaring a ``browser`` entry
point whose file has not been built yet are kept, and reported in a single
warning so the developer knows to run the web build.

Discovery never raises: a broken extension is logged and skipped.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

PACKAGE_JSON = "package.json"
PACKAGE_NLS_JSON = "package.nls.json"

_README_RE = re.compile(r"^readme(\.txt|\.md|)$", re.IGNORECASE)
_CHANGELOG_RE = re.compile(r"^changelog(\.txt|\.md|)$", re.IGNORECASE)

_MAX_WORKERS = 8


def discover_extensions(extensions_root: Path) -> list[dict[str, Any]]:
    """Scan *extensions_root* and return the catalog of browser-capable extensions.

    The catalog is ordered by folder name.  Folder scans run concurrently and
    are joined before this function returns.
    """
    try:
        folders = sorted(
            entry.name for entry in os.scandir(extensions_root) if not entry.is_file()
        )
    except OSError as exc:
        logger.error("Cannot read extensions folder %s: %s", extensions_root, exc)
        return []

    unbuilt: list[str] = []
    with ThreadPoolExecutor(max_workers=_MAX_WORKERS, thread_name_prefix="codeweb-scan") as pool:
        results = list(
            pool.map(lambda name: _scan_extension(extensions_root, name, unbuilt), folders)
        )

    if unbuilt:
        logger.warning(
            "Make sure to run the web build of the extensions.\n"
            "Could not find the following browser main files:\n%s",
            "\n".join(sorted(unbuilt)),
        )

    return [manifest for manifest in results if manifest is not None]


def _scan_extension(
    extensions_root: Path, folder_name: str, unbuilt: list[str]
) -> dict[str, Any] | None:
    """Build the manifest for one extension folder, or ``None`` to skip it."""
    extension_path = extensions_root / folder_name
    try:
        children = sorted(os.listdir(extension_path))
    except OSError as exc:
        logger.error("Cannot read extension folder %s: %s", extension_path, exc)
        return None

    readme = _first_match(children, _README_RE)
    changelog = _first_match(children, _CHANGELOG_RE)

    package_json_path = extension_path / PACKAGE_JSON
    if not package_json_path.exists():
        return None

    try:
        package_json = json.loads(package_json_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
        logger.error("Skipping extension %s: cannot parse %s: %s", folder_name, PACKAGE_JSON, exc)
        return None
    if not isinstance(package_json, dict):
        logger.error("Skipping extension %s: %s is not a JSON object", folder_name, PACKAGE_JSON)
        return None

    browser_main = package_json.get("browser")
    if package_json.get("main") and not browser_main:
        logger.debug("Skipping extension %s: no browser entry point", folder_name)
        return None

    if browser_main:
        package_json["main"] = browser_main
        main_file = os.path.normpath(os.path.join(extension_path, str(browser_main).lstrip("/")))
        if os.path.splitext(main_file)[1] != ".js":
            main_file += ".js"
        if not os.path.exists(main_file):
            # list.append is atomic, workers share this list
            unbuilt.append(os.path.relpath(main_file, extensions_root))

    package_json["extensionKind"] = ["web"]

    manifest: dict[str, Any] = {
        "extensionPath": folder_name,
        "packageJSON": package_json,
    }
    if (extension_path / PACKAGE_NLS_JSON).exists():
        manifest["packageNLSPath"] = f"{folder_name}/{PACKAGE_NLS_JSON}"
    if readme:
        manifest["readmePath"] = f"{folder_name}/{readme}"
    if changelog:
        manifest["changelogPath"] = f"{folder_name}/{changelog}"
    return manifest


def _first_match(names: list[str], pattern: re.Pattern[str]) -> str | None:
    for name in names:
        if pattern.match(name):
            return name
    return None


class ExtensionCatalog:
    """The extension catalog, discovered once in the background.

    :meth:`start` returns immediately; :meth:`result` blocks only the caller
    until discovery has finished.
    """

    def __init__(self) -> None:
        self._future: Future[list[dict[str, Any]]] = Future()
        self._started = False
        self._lock = threading.Lock()

    @classmethod
    def from_extensions(cls, extensions: list[dict[str, Any]]) -> ExtensionCatalog:
        """Return a catalog that is already resolved to *extensions*."""
        catalog = cls()
        catalog._started = True
        catalog._future.set_result(extensions)
        return catalog

    def start(self, extensions_root: Path) -> ExtensionCatalog:
        """Launch discovery of *extensions_root* in a daemon thread (once)."""
        with self._lock:
            if self._started:
                return self
            self._started = True

        def _run() -> None:
            try:
                self._future.set_result(discover_extensions(extensions_root))
            except Exception as exc:  # noqa: BLE001
                logger.exception("Extension discovery failed")
                self._future.set_exception(exc)

        threading.Thread(target=_run, name="codeweb-discovery", daemon=True).start()
        return self

    def result(self, timeout: float | None = None) -> list[dict[str, Any]]:
        """Block until the catalog is ready and return it."""
        return self._future.result(timeout=timeout)

    def done(self) -> bool:
        return self._future.done()
