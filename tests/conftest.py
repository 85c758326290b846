"""Shared test fixtures for chatmux.

Provides a scripted fake transport, backend profiles and a capturing
rich Console.
"""

from __future__ import annotations

from io import StringIO

import pytest
from rich.console import Console

from chatmux.backends import resolve_backend
from chatmux.stream import message_to_frames


class FakeTransport:
    """Transport that replays scripted responses and records requests.

    Each scripted response is either a complete message dict (returned by
    ``complete``, or converted to frames for ``stream``) or a list of raw
    frames (streamed as-is).
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests: list = []
        self.closed = False

    def _next(self, request):
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected backend request #{len(self.requests)}")
        return self.responses.pop(0)

    def complete(self, request) -> dict:
        response = self._next(request)
        assert isinstance(response, dict), "scripted frames answered a non-streaming request"
        return response

    def stream(self, request):
        response = self._next(request)
        frames = response if isinstance(response, list) else message_to_frames(request.family, response)
        yield from frames

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_transport():
    """Factory: ``fake_transport(response, ...)`` -> FakeTransport."""

    def _make(*responses):
        return FakeTransport(responses)

    return _make


@pytest.fixture
def anthropic_profile():
    return resolve_backend("anthropic:claude-sonnet-4-5")


@pytest.fixture
def openai_chat_profile():
    return resolve_backend("openai:gpt-4.1")


@pytest.fixture
def responses_profile():
    return resolve_backend("openai:gpt-5:medium")


@pytest.fixture
def gemini_profile():
    return resolve_backend("google:gemini-2.5-flash")


@pytest.fixture
def output():
    """StringIO capturing a plain (no ANSI) Console's output."""
    return StringIO()


@pytest.fixture
def console(output):
    return Console(file=output, force_terminal=False, width=100)
