"""HTTP transports: httpx clients with tenacity retry and SSE parsing."""

from chatmux.transport.base import (
    DEFAULT_TIMEOUT,
    HttpTransport,
    Transport,
    iter_sse,
)
from chatmux.transport.errors import (
    TransportAuthError,
    TransportConfigError,
    TransportError,
    TransportRateLimitError,
    TransportResponseError,
)
from chatmux.transport.vendors import (
    AnthropicTransport,
    GeminiTransport,
    OpenAIChatTransport,
    ResponsesTransport,
    transport_for,
)

__all__ = [
    "DEFAULT_TIMEOUT",
    "HttpTransport",
    "Transport",
    "iter_sse",
    "TransportAuthError",
    "TransportConfigError",
    "TransportError",
    "TransportRateLimitError",
    "TransportResponseError",
    "AnthropicTransport",
    "GeminiTransport",
    "OpenAIChatTransport",
    "ResponsesTransport",
    "transport_for",
]
