"""Transport error hierarchy.

These are the only chatmux errors that cross an ``ask`` call as hard
failures. All inherit from ChatmuxError.
"""

from __future__ import annotations

from chatmux.exceptions import ChatmuxError


class TransportError(ChatmuxError):
    """Base for all transport errors (network, auth, rate limit, backend)."""


class TransportConfigError(TransportError):
    """Missing or invalid transport configuration (e.g., no API key)."""


class TransportRateLimitError(TransportError):
    """Rate limited by the API (429).

    Attributes:
        retry_after: Seconds to wait before retrying (from Retry-After header),
            or None if not provided.
    """

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"{message} (retry after {retry_after}s)"
        super().__init__(message)


class TransportAuthError(TransportError):
    """Authentication failed (401/403)."""


class TransportResponseError(TransportError):
    """Backend returned an error status or an unexpected payload.

    Attributes:
        status_code: HTTP status, or None for errors reported in-band.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
