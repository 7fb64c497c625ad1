"""Callback relay for out-of-band authentication redirects.

An authentication flow that finishes in a separate browser tab cannot hand
its redirect back to the workbench directly.  Instead it hits ``/callback``
with a request id chosen by the workbench; the workbench then polls
``/fetch-callback`` with the same id and receives the redirect exactly once.
"""

from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping, Sequence
from urllib.parse import unquote

from codeweb.errors import BadRequest

REQUEST_ID_KEY = "vscode-requestId"
SCHEME_KEY = "vscode-scheme"
AUTHORITY_KEY = "vscode-authority"
PATH_KEY = "vscode-path"
QUERY_KEY = "vscode-query"
FRAGMENT_KEY = "vscode-fragment"

WELL_KNOWN_KEYS = (REQUEST_ID_KEY, SCHEME_KEY, AUTHORITY_KEY, PATH_KEY, QUERY_KEY, FRAGMENT_KEY)

DEFAULT_CALLBACK_SCHEME = "code-oss"

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_TTL_SECONDS = 600.0


def first_query_value(query: Mapping[str, Sequence[str]], key: str) -> str | None:
    """Return the first value of *key* in a ``parse_qs``-style mapping."""
    values = query.get(key)
    if not values:
        return None
    return values[0]


def build_callback_descriptor(query: Mapping[str, Sequence[str]]) -> tuple[str, str]:
    """Turn ``/callback`` query parameters into ``(request_id, descriptor_json)``.

    Well-known values are percent-decoded once more on top of the URL
    decoding already applied to the query.  Every other parameter is appended
    to the redirect query as ``key=value`` in the order it appeared, so a
    provider's own parameters reach the workbench without this server knowing
    their names.

    Raises:
        BadRequest: If ``vscode-requestId`` is missing or empty.
    """
    request_id, scheme, authority, path, redirect_query, fragment = (
        _decoded(first_query_value(query, key)) for key in WELL_KNOWN_KEYS
    )
    if not request_id:
        raise BadRequest("Bad request.")

    extras = [
        (key, values[0])
        for key, values in query.items()
        if key not in WELL_KNOWN_KEYS and values
    ]
    if extras:
        # The first extra pair is appended without a separator.
        redirect_query = (redirect_query or "") + "&".join(f"{k}={v}" for k, v in extras)

    descriptor = {
        "scheme": scheme or DEFAULT_CALLBACK_SCHEME,
        "authority": authority,
        "path": path,
        "query": redirect_query,
        "fragment": fragment,
    }
    payload = json.dumps(
        {k: v for k, v in descriptor.items() if v is not None},
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return request_id, payload


def _decoded(value: str | None) -> str | None:
    if not value:
        return value
    return unquote(value)


class CallbackRelay:
    """Single-slot exchange of redirect descriptors keyed by request id.

    A slot is written by :meth:`register` and emptied by the first
    :meth:`consume` for its id.  Slots that are never consumed expire after
    *ttl_seconds*, and at most *max_entries* slots are held; registering past
    that limit evicts the oldest registration.
    """

    def __init__(
        self,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._slots: OrderedDict[str, tuple[float, str]] = OrderedDict()
        self._lock = threading.Lock()

    def register(self, request_id: str, descriptor: str) -> None:
        """Store *descriptor* for *request_id*, replacing any earlier registration."""
        now = self._clock()
        with self._lock:
            self._slots.pop(request_id, None)
            self._slots[request_id] = (now + self._ttl, descriptor)
            self._purge_expired(now)
            while len(self._slots) > self._max_entries:
                self._slots.popitem(last=False)

    def consume(self, request_id: str) -> str | None:
        """Remove and return the descriptor for *request_id*, or ``None``."""
        now = self._clock()
        with self._lock:
            slot = self._slots.pop(request_id, None)
        if slot is None:
            return None
        expires_at, descriptor = slot
        if expires_at <= now:
            return None
        return descriptor

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._slots)

    def _purge_expired(self, now: float) -> None:
        # Slots are kept in registration order, so expiry times are ascending.
        while self._slots:
            _request_id, (expires_at, _descriptor) = next(iter(self._slots.items()))
            if expires_at > now:
                break
            self._slots.popitem(last=False)
