"""Exceptions raised by the automations backend client."""

from typing import Any


class AutomationClientError(Exception):
    """Base exception for backend client errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any = None,
        retriable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body
        self.retriable = retriable


class AuthenticationError(AutomationClientError):
    """No credentials available, or the backend rejected them."""

    pass


class NotFoundError(AutomationClientError):
    """The backend does not know the requested automation."""

    pass


class TransportError(AutomationClientError):
    """The request never produced an HTTP response (network, timeout)."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, retriable=True, **kwargs)


class RemoteError(AutomationClientError):
    """The backend answered with a non-2xx status.

    ``body`` keeps the response payload verbatim for display.
    """

    pass


def error_message(body: Any, fallback: str) -> str:
    """Pick a human-readable message out of an error body."""
    if isinstance(body, dict):
        for key in ("message", "error", "details"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value
    if isinstance(body, str) and body.strip():
        return body.strip()
    return fallback
