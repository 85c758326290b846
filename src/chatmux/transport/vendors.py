"""Per-family HTTP transports."""

from __future__ import annotations

import logging

from chatmux.backends.profiles import BackendFamily, BackendProfile
from chatmux.request import BackendRequest
from chatmux.transport.base import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, HttpTransport

logger = logging.getLogger(__name__)


class AnthropicTransport(HttpTransport):
    """Anthropic Messages API (``/messages``, ``x-api-key`` auth)."""

    response_key = "content"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"x-api-key": api_key}

    def endpoint(self, request: BackendRequest) -> str:
        return "/messages"


class OpenAIChatTransport(HttpTransport):
    """Chat Completions API, shared by OpenAI-compatible vendors."""

    response_key = "choices"

    def endpoint(self, request: BackendRequest) -> str:
        return "/chat/completions"


class ResponsesTransport(HttpTransport):
    """OpenAI Responses API."""

    response_key = "output"

    def endpoint(self, request: BackendRequest) -> str:
        return "/responses"


class GeminiTransport(HttpTransport):
    """Gemini generateContent API; the model id is part of the path."""

    response_key = "candidates"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"x-goog-api-key": api_key}

    def endpoint(self, request: BackendRequest) -> str:
        if request.stream:
            return f"/models/{request.model}:streamGenerateContent?alt=sse"
        return f"/models/{request.model}:generateContent"


_TRANSPORTS: dict[BackendFamily, type[HttpTransport]] = {
    BackendFamily.ANTHROPIC: AnthropicTransport,
    BackendFamily.OPENAI_CHAT: OpenAIChatTransport,
    BackendFamily.OPENAI_RESPONSES: ResponsesTransport,
    BackendFamily.GEMINI: GeminiTransport,
}


def transport_for(
    profile: BackendProfile,
    api_key: str | None = None,
    *,
    base_url: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> HttpTransport:
    """Create the HTTP transport matching ``profile``'s wire family.

    Raises:
        TransportConfigError: If no API key is provided or found.
    """
    cls = _TRANSPORTS[profile.family]
    logger.debug("Using %s for %s:%s", cls.__name__, profile.vendor, profile.model)
    return cls(profile, api_key=api_key, base_url=base_url, timeout=timeout, max_retries=max_retries)
