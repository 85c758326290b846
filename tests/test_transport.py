"""Tests for the chatmux.transport package.

Tests cover:
- HttpTransport: retry behavior, auth errors, env config, response checks
- Vendor transports: endpoints and auth headers per wire family
- iter_sse: SSE decoding, [DONE] sentinel, in-band error frames
- Error hierarchy: inheritance and attributes
"""

from __future__ import annotations

import json

import httpx
import pytest

from chatmux.backends import resolve_backend
from chatmux.exceptions import ChatmuxError
from chatmux.request import BackendRequest
from chatmux.transport import (
    AnthropicTransport,
    GeminiTransport,
    OpenAIChatTransport,
    ResponsesTransport,
    Transport,
    TransportAuthError,
    TransportConfigError,
    TransportError,
    TransportRateLimitError,
    TransportResponseError,
    iter_sse,
    transport_for,
)


# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
    """Skip tenacity's backoff sleeps."""
    monkeypatch.setattr("time.sleep", lambda seconds: None)


def _anthropic_message(text: str = "Hello!") -> dict:
    return {
        "id": "msg_test",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
    }


def _request(profile, *, stream: bool = False) -> BackendRequest:
    return BackendRequest(
        family=profile.family,
        model=profile.model,
        payload={"model": profile.model, "stream": stream},
        stream=stream,
        headers=profile.headers,
    )


def _make_transport(handler):
    """Create an httpx.MockTransport from a handler function."""
    return httpx.MockTransport(handler)


def _make_transport_client(
    spec: str = "anthropic:claude-sonnet-4-5",
    handler=None,
    api_key: str = "test-key",
    base_url: str = "http://test-api",
    max_retries: int = 3,
):
    """Create the vendor transport for ``spec`` with an optional mock handler."""
    profile = resolve_backend(spec)
    transport = transport_for(profile, api_key, base_url=base_url, max_retries=max_retries)
    if handler is not None:
        # Replace with mock transport but keep the real headers
        headers = dict(transport._client.headers)
        transport._client.close()
        transport._client = httpx.Client(transport=_make_transport(handler), headers=headers)
    return profile, transport


def _sse(*frames, done: bool = False) -> str:
    lines = [f"data: {json.dumps(frame)}\n\n" for frame in frames]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines)


# ===========================================================================
# Error hierarchy
# ===========================================================================


class TestErrorHierarchy:
    def test_transport_error_inherits_chatmux_error(self):
        assert issubclass(TransportError, ChatmuxError)

    @pytest.mark.parametrize(
        "cls",
        [TransportConfigError, TransportRateLimitError, TransportAuthError, TransportResponseError],
    )
    def test_subclasses(self, cls):
        assert issubclass(cls, TransportError)

    def test_rate_limit_message(self):
        err = TransportRateLimitError("Rate limited", retry_after=2.0)
        assert err.retry_after == 2.0
        assert "retry after 2.0s" in str(err)

    def test_response_error_status(self):
        assert TransportResponseError("boom").status_code is None
        assert TransportResponseError("boom", status_code=500).status_code == 500


# ===========================================================================
# Retry
# ===========================================================================


class TestRetry:
    """Test retry behavior with different HTTP status codes."""

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retry_then_success(self, status):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                return httpx.Response(status, json={"error": "try again"})
            return httpx.Response(200, json=_anthropic_message())

        profile, transport = _make_transport_client(handler=handler)
        response = transport.complete(_request(profile))

        assert call_count == 2
        assert response["content"][0]["text"] == "Hello!"
        transport.close()

    @pytest.mark.parametrize("status", [401, 403])
    def test_no_retry_on_auth_error(self, status):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            return httpx.Response(status, json={"error": "unauthorized"})

        profile, transport = _make_transport_client(handler=handler)
        with pytest.raises(TransportAuthError, match="Authentication failed"):
            transport.complete(_request(profile))
        assert call_count == 1
        transport.close()

    def test_no_retry_on_400(self):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            return httpx.Response(400, json={"error": "bad request"})

        profile, transport = _make_transport_client(handler=handler)
        with pytest.raises(TransportResponseError) as exc_info:
            transport.complete(_request(profile))
        assert exc_info.value.status_code == 400
        assert call_count == 1
        transport.close()

    def test_max_retries_exhausted(self):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            return httpx.Response(429, json={"error": "rate limited"}, headers={"Retry-After": "0.1"})

        profile, transport = _make_transport_client(handler=handler, max_retries=3)
        with pytest.raises(TransportRateLimitError):
            transport.complete(_request(profile))
        assert call_count == 3
        transport.close()

    def test_rate_limit_error_has_retry_after(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": "rate limited"}, headers={"Retry-After": "42"})

        profile, transport = _make_transport_client(handler=handler, max_retries=1)
        with pytest.raises(TransportRateLimitError) as exc_info:
            transport.complete(_request(profile))
        assert exc_info.value.retry_after == 42.0
        transport.close()

    def test_unparseable_retry_after(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "soon"})

        profile, transport = _make_transport_client(handler=handler, max_retries=1)
        with pytest.raises(TransportRateLimitError) as exc_info:
            transport.complete(_request(profile))
        assert exc_info.value.retry_after is None
        transport.close()

    def test_connect_error_retried_then_wrapped(self):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            raise httpx.ConnectError("connection refused", request=request)

        profile, transport = _make_transport_client(handler=handler, max_retries=2)
        with pytest.raises(TransportError, match="request failed"):
            transport.complete(_request(profile))
        assert call_count == 2
        transport.close()

    def test_stream_open_retried(self):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, text=_sse({"type": "message_stop"}))

        profile, transport = _make_transport_client(handler=handler)
        frames = list(transport.stream(_request(profile, stream=True)))
        assert frames == [{"type": "message_stop"}]
        assert call_count == 2
        transport.close()


# ===========================================================================
# Responses
# ===========================================================================


class TestResponses:
    def test_missing_response_key(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        profile, transport = _make_transport_client(handler=handler)
        with pytest.raises(TransportResponseError, match="missing 'content'"):
            transport.complete(_request(profile))
        transport.close()

    def test_non_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        profile, transport = _make_transport_client(handler=handler)
        with pytest.raises(TransportResponseError, match="not JSON"):
            transport.complete(_request(profile))
        transport.close()

    def test_payload_sent_as_json(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_anthropic_message())

        profile, transport = _make_transport_client(handler=handler)
        transport.complete(_request(profile))
        assert seen["url"] == "http://test-api/messages"
        assert seen["body"] == {"model": "claude-sonnet-4-5", "stream": False}
        transport.close()

    def test_stream_frames(self):
        body = _sse(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
            {"type": "message_stop"},
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=body, headers={"Content-Type": "text/event-stream"})

        profile, transport = _make_transport_client(handler=handler)
        frames = list(transport.stream(_request(profile, stream=True)))
        assert [f["type"] for f in frames] == ["content_block_delta", "message_stop"]
        transport.close()

    def test_stream_error_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="bad key")

        profile, transport = _make_transport_client(handler=handler)
        with pytest.raises(TransportAuthError, match="bad key"):
            list(transport.stream(_request(profile, stream=True)))
        transport.close()

    def test_stream_is_lazy(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, text=_sse({"type": "message_stop"}))

        profile, transport = _make_transport_client(handler=handler)
        frames = transport.stream(_request(profile, stream=True))
        assert calls == []
        list(frames)
        assert len(calls) == 1
        transport.close()


# ===========================================================================
# Vendors and configuration
# ===========================================================================


class TestVendors:
    @pytest.mark.parametrize(
        "spec,cls",
        [
            ("anthropic:claude-sonnet-4-5", AnthropicTransport),
            ("openai:gpt-4.1", OpenAIChatTransport),
            ("deepseek:deepseek-chat", OpenAIChatTransport),
            ("openai:gpt-5:medium", ResponsesTransport),
            ("google:gemini-2.5-flash", GeminiTransport),
        ],
    )
    def test_transport_for(self, spec, cls):
        _, transport = _make_transport_client(spec)
        assert type(transport) is cls
        assert isinstance(transport, Transport)
        transport.close()

    def test_anthropic_headers(self):
        _, transport = _make_transport_client("anthropic:claude-sonnet-4-5")
        headers = transport._client.headers
        assert headers["x-api-key"] == "test-key"
        assert headers["anthropic-version"] == "2023-06-01"
        assert "authorization" not in headers
        transport.close()

    def test_bearer_headers(self):
        _, transport = _make_transport_client("openai:gpt-4.1")
        assert transport._client.headers["authorization"] == "Bearer test-key"
        transport.close()

    def test_gemini_headers(self):
        _, transport = _make_transport_client("google:gemini-2.5-flash")
        assert transport._client.headers["x-goog-api-key"] == "test-key"
        transport.close()

    def test_gemini_endpoints(self):
        profile, transport = _make_transport_client("google:gemini-2.5-flash")
        assert transport.endpoint(_request(profile)) == "/models/gemini-2.5-flash:generateContent"
        assert (
            transport.endpoint(_request(profile, stream=True))
            == "/models/gemini-2.5-flash:streamGenerateContent?alt=sse"
        )
        transport.close()

    @pytest.mark.parametrize(
        "spec,path",
        [
            ("openai:gpt-4.1", "/chat/completions"),
            ("openai:gpt-5:medium", "/responses"),
        ],
    )
    def test_openai_endpoints(self, spec, path):
        profile, transport = _make_transport_client(spec)
        assert transport.endpoint(_request(profile)) == path
        transport.close()


class TestConfig:
    def test_env_var_api_key(self, monkeypatch):
        monkeypatch.delenv("CHATMUX_ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key-123")
        transport = transport_for(resolve_backend("c"))
        assert transport._api_key == "env-key-123"
        transport.close()

    def test_chatmux_env_var_wins(self, monkeypatch):
        monkeypatch.setenv("CHATMUX_ANTHROPIC_API_KEY", "chatmux-key")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "vendor-key")
        transport = transport_for(resolve_backend("c"))
        assert transport._api_key == "chatmux-key"
        transport.close()

    def test_env_var_base_url(self, monkeypatch):
        monkeypatch.setenv("CHATMUX_OPENAI_BASE_URL", "http://custom-api/v1/")
        transport = transport_for(resolve_backend("openai:gpt-4.1"), "test-key")
        assert transport._base_url == "http://custom-api/v1"
        transport.close()

    def test_constructor_overrides_env(self, monkeypatch):
        monkeypatch.setenv("CHATMUX_OPENAI_BASE_URL", "http://env-url/v1")
        transport = transport_for(
            resolve_backend("openai:gpt-4.1"), "ctor-key", base_url="http://ctor-url/v1"
        )
        assert transport._base_url == "http://ctor-url/v1"
        assert transport._api_key == "ctor-key"
        transport.close()

    def test_default_base_url(self, monkeypatch):
        monkeypatch.delenv("CHATMUX_ANTHROPIC_BASE_URL", raising=False)
        transport = transport_for(resolve_backend("c"), "k")
        assert transport._base_url == "https://api.anthropic.com/v1"
        transport.close()

    def test_missing_api_key_raises(self, monkeypatch):
        monkeypatch.delenv("CHATMUX_ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(TransportConfigError, match="ANTHROPIC_API_KEY"):
            transport_for(resolve_backend("c"))

    def test_context_manager_closes(self):
        with transport_for(resolve_backend("c"), "k") as transport:
            assert not transport._client.is_closed
        assert transport._client.is_closed


# ===========================================================================
# SSE decoding
# ===========================================================================


class TestIterSSE:
    def test_frames_and_done(self):
        lines = ['data: {"a": 1}', "", 'data: {"b": 2}', "", "data: [DONE]", "", 'data: {"c": 3}', ""]
        assert list(iter_sse(lines)) == [{"a": 1}, {"b": 2}]

    def test_multiline_data_joined(self):
        lines = ['data: {"a":', "data: 1}", ""]
        assert list(iter_sse(lines)) == [{"a": 1}]

    def test_event_and_comment_lines_ignored(self):
        lines = [": keep-alive", "event: message_start", 'data: {"type": "message_start"}', "id: 7", ""]
        assert list(iter_sse(lines)) == [{"type": "message_start"}]

    def test_trailing_frame_without_blank_line(self):
        assert list(iter_sse(['data: {"a": 1}'])) == [{"a": 1}]

    def test_no_space_after_colon(self):
        assert list(iter_sse(['data:{"a": 1}', ""])) == [{"a": 1}]

    def test_malformed_json(self):
        with pytest.raises(TransportResponseError, match="Malformed SSE frame"):
            list(iter_sse(["data: {not json", ""]))

    def test_anthropic_error_frame(self):
        frame = {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}
        with pytest.raises(TransportResponseError, match="Overloaded"):
            list(iter_sse([f"data: {json.dumps(frame)}", ""]))

    def test_openai_error_frame(self):
        frame = {"error": {"message": "context length exceeded"}}
        with pytest.raises(TransportResponseError, match="context length exceeded"):
            list(iter_sse([f"data: {json.dumps(frame)}", ""]))

    def test_null_error_field_is_not_an_error(self):
        assert list(iter_sse(['data: {"error": null, "x": 1}', ""])) == [{"error": None, "x": 1}]
