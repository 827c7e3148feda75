"""Error taxonomy shared by the dispatch coordinator."""

from __future__ import annotations

GENERIC_FAILURE = "Something went wrong. Please try again."


class DispatchError(RuntimeError):
    """Base class for every failure raised by the coordinator."""


class TransportError(DispatchError):
    """Raised when a request never reached the backend."""


class ApiError(DispatchError):
    """Raised when the backend answers with a non-2xx status."""

    def __init__(self, status_code: int, detail: str | None = None) -> None:
        message = detail or f"Backend responded with HTTP {status_code}"
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class PayloadError(DispatchError):
    """Raised when a successful response body does not have the expected shape."""


class ValidationError(DispatchError):
    """Raised for a local precondition failure; never sent over the wire."""


def user_message(exc: BaseException, fallback: str = GENERIC_FAILURE) -> str:
    """Return the text to show a user for ``exc``.

    Server supplied details and local validation messages are shown as-is;
    anything else collapses to ``fallback``.
    """
    if isinstance(exc, ApiError):
        return exc.detail or fallback
    if isinstance(exc, ValidationError):
        return str(exc) or fallback
    return fallback


__all__ = [
    "ApiError",
    "DispatchError",
    "GENERIC_FAILURE",
    "PayloadError",
    "TransportError",
    "ValidationError",
    "user_message",
]
