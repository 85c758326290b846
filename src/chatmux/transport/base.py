"""Transport protocol and the shared httpx implementation.

A transport sends a BackendRequest and returns either the complete
response message (``complete``) or an iterator of decoded SSE frames
(``stream``). Retry with exponential backoff happens here and nowhere
else; callers see either a result or a TransportError.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Iterable, Iterator, Protocol, runtime_checkable

import httpx
import tenacity

from chatmux.backends.profiles import BackendProfile
from chatmux.request import BackendRequest
from chatmux.transport.errors import (
    TransportAuthError,
    TransportConfigError,
    TransportError,
    TransportRateLimitError,
    TransportResponseError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600.0
DEFAULT_MAX_RETRIES = 3

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_AUTH_ERROR_STATUS_CODES = {401, 403}
_DONE = "[DONE]"


@runtime_checkable
class Transport(Protocol):
    """Anything that can carry a BackendRequest to a backend."""

    def complete(self, request: BackendRequest) -> dict:
        """Send a non-streaming request, return the response message."""
        ...

    def stream(self, request: BackendRequest) -> Iterator[dict]:
        """Send a streaming request, yield decoded frames lazily."""
        ...

    def close(self) -> None:
        """Release underlying resources."""
        ...


def _is_retryable(exc: BaseException) -> bool:
    """Check if an exception is retryable.

    Retryable: 429, 500, 502, 503, 504, connection errors.
    Not retryable: 401, 403, 400, other client errors.
    """
    if isinstance(exc, TransportAuthError):
        return False
    if isinstance(exc, TransportRateLimitError):
        return True
    if isinstance(exc, TransportResponseError):
        return exc.status_code in _RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


def iter_sse(lines: Iterable[str]) -> Iterator[dict]:
    """Decode Server-Sent Events into JSON frames.

    Multi-line ``data:`` fields are joined; ``event:``, ``id:`` and comment
    lines are ignored. The ``[DONE]`` sentinel ends the stream. An error
    frame raises TransportResponseError.
    """
    data: list[str] = []

    def _decode() -> dict | None:
        payload = "\n".join(data)
        data.clear()
        if not payload:
            return None
        try:
            frame = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise TransportResponseError(f"Malformed SSE frame: {payload[:200]}") from exc
        if isinstance(frame, dict) and (frame.get("type") == "error" or frame.get("error")):
            error = frame.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise TransportResponseError(f"Backend error in stream: {message or frame}")
        return frame

    for line in lines:
        if not line:
            frame = _decode()
            if frame is not None:
                yield frame
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field != "data":
            continue
        value = value[1:] if value.startswith(" ") else value
        if value.strip() == _DONE:
            return
        data.append(value)
    frame = _decode()
    if frame is not None:
        yield frame


class HttpTransport:
    """Sync httpx transport with tenacity retry.

    Subclasses supply the endpoint and authentication headers for one wire
    family and the key that marks a well-formed complete response.

    Args:
        profile: Bound backend profile (base URL, key env vars, headers).
        api_key: API key. Falls back to the profile's environment variables.
        base_url: API root. Falls back to ``CHATMUX_<VENDOR>_BASE_URL``,
            then to the profile's base URL.
        timeout: Request timeout in seconds.
        max_retries: Maximum attempts for retryable errors.

    Raises:
        TransportConfigError: If no API key is provided or found.
    """

    response_key = ""

    def __init__(
        self,
        profile: BackendProfile,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self._profile = profile
        self._api_key = api_key or self._key_from_env(profile)
        if not self._api_key:
            raise TransportConfigError(
                f"No API key provided for {profile.vendor}. Pass api_key= or set "
                f"{' or '.join(profile.api_key_env)}."
            )
        self._base_url = (
            base_url
            or os.environ.get(f"CHATMUX_{profile.vendor.upper()}_BASE_URL")
            or profile.base_url
        ).rstrip("/")
        self._max_retries = max_retries
        self._client = httpx.Client(
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                **self.auth_headers(self._api_key),
                **dict(profile.headers),
            },
        )

    @staticmethod
    def _key_from_env(profile: BackendProfile) -> str:
        for name in profile.api_key_env:
            value = os.environ.get(name)
            if value:
                return value
        return ""

    # ------------------------------------------------------------------
    # Per-family hooks
    # ------------------------------------------------------------------

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def endpoint(self, request: BackendRequest) -> str:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Transport protocol
    # ------------------------------------------------------------------

    def _retryer(self) -> tenacity.Retrying:
        return tenacity.Retrying(
            retry=tenacity.retry_if_exception(_is_retryable),
            wait=(
                tenacity.wait_exponential(multiplier=1, min=1, max=30)
                + tenacity.wait_random(0, 2)
            ),
            stop=tenacity.stop_after_attempt(self._max_retries),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def complete(self, request: BackendRequest) -> dict:
        """Send a non-streaming request with retry.

        Raises:
            TransportAuthError: On 401/403 (no retry).
            TransportRateLimitError: On 429 after all retries exhausted.
            TransportResponseError: On other error statuses or an
                unexpected response format.
            TransportError: On network failures after all retries.
        """
        try:
            return self._retryer()(self._do_complete, request)
        except httpx.HTTPError as exc:
            raise TransportError(f"{self._profile.vendor} request failed: {exc}") from exc

    def _do_complete(self, request: BackendRequest) -> dict:
        """Execute a single request (no retry)."""
        response = self._client.post(
            f"{self._base_url}{self.endpoint(request)}",
            json=request.payload,
            headers=dict(request.headers),
        )
        self._check_status(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise TransportResponseError(f"Response is not JSON: {response.text[:200]}") from exc
        if self.response_key and self.response_key not in data:
            raise TransportResponseError(
                f"Unexpected response format: missing '{self.response_key}' key. "
                f"Response: {data}"
            )
        return data

    def stream(self, request: BackendRequest) -> Iterator[dict]:
        """Send a streaming request and yield decoded SSE frames.

        Opening the stream is retried; once frames are flowing a failure
        propagates, since partial output may already have been rendered.
        """
        try:
            response = self._retryer()(self._open_stream, request)
        except httpx.HTTPError as exc:
            raise TransportError(f"{self._profile.vendor} request failed: {exc}") from exc
        try:
            yield from iter_sse(response.iter_lines())
        except httpx.HTTPError as exc:
            raise TransportError(f"{self._profile.vendor} stream interrupted: {exc}") from exc
        finally:
            response.close()

    def _open_stream(self, request: BackendRequest) -> httpx.Response:
        http_request = self._client.build_request(
            "POST",
            f"{self._base_url}{self.endpoint(request)}",
            json=request.payload,
            headers=dict(request.headers),
        )
        response = self._client.send(http_request, stream=True)
        if response.status_code >= 400:
            response.read()
            response.close()
            self._check_status(response)
        return response

    def _check_status(self, response: httpx.Response) -> None:
        if response.status_code in _AUTH_ERROR_STATUS_CODES:
            raise TransportAuthError(
                f"Authentication failed: HTTP {response.status_code} - {response.text}"
            )
        if response.status_code == 429:
            retry_after_raw = response.headers.get("Retry-After")
            retry_after: float | None = None
            if retry_after_raw is not None:
                try:
                    retry_after = float(retry_after_raw)
                except (ValueError, TypeError):
                    pass
            raise TransportRateLimitError(
                f"Rate limited: HTTP 429 - {response.text}",
                retry_after=retry_after,
            )
        if response.status_code >= 400:
            raise TransportResponseError(
                f"HTTP {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

    def close(self) -> None:
        """Close the underlying httpx client."""
        self._client.close()

    def __enter__(self) -> HttpTransport:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
