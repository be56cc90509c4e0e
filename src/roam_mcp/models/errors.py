"""Exception types raised by the Roam client and hierarchy tools."""

from typing import Any


class RoamError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidRequestError(RoamError):
    """The caller supplied an unusable combination of parameters."""


class AuthenticationError(RoamError):
    """API token rejected by the Roam backend."""


class BlockNotFoundError(RoamError):
    """A block uid did not resolve to any block."""

    def __init__(self, uid: str, message: str | None = None):
        super().__init__(message or f"Block with UID {uid} not found", {"uid": uid})
        self.uid = uid


class PageNotFoundError(RoamError):
    """No page matched the requested title."""

    def __init__(self, title: str, message: str | None = None):
        super().__init__(message or f'Page with title "{title}" not found', {"title": title})
        self.title = title


class RateLimitError(RoamError):
    """The remote store rejected the call for exceeding its request quota.

    ``retry_after`` carries the server's ``Retry-After`` header for callers
    and log lines; the scheduler's backoff keeps its own doubling schedule.
    """

    def __init__(self, retry_after: int | None = None, message: str | None = None):
        super().__init__(
            message or "Too many requests, try again in a minute",
            {"retry_after": retry_after},
        )
        self.retry_after = retry_after


class RetriesExhaustedError(RoamError):
    """Terminal wrapper over the last quota failure once attempts run out."""

    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(
            f"Failed after {attempts} attempts: {last_error}",
            {"attempts": attempts},
        )
        self.last_error = last_error
        self.attempts = attempts


class QueryError(RoamError):
    """The backend refused a query or write as malformed (HTTP 400)."""


class NetworkError(RoamError):
    """Transport failure or server-side (5xx) error."""


class TimeoutError(RoamError):  # noqa: A001
    """An HTTP call exceeded the configured timeout."""

    def __init__(self, operation: str):
        super().__init__(f"Request timed out during {operation}", {"operation": operation})
        self.operation = operation


class ReferenceResolutionError(RoamError):
    """Block reference substitution failed while building a tree."""
