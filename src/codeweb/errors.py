"""Request errors that map onto HTTP status codes."""

from __future__ import annotations


class RequestError(Exception):
    """A failure terminal for one request, answered with *status* and *message*.

    The message is sent to the client verbatim, so it must never carry
    internal details.
    """

    status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequest(RequestError):
    """Malformed or out-of-bounds request."""

    status = 400


class NotFound(RequestError):
    """Unknown route or missing file."""

    status = 404
