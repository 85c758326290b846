"""Rendering of canonical events to a rich Console.

The renderer is a pure output sink: it never changes control flow or the
value an ``ask`` call returns. Output goes to an injectable Console so
tests can capture it with ``Console(file=StringIO())``.
"""

from __future__ import annotations

import enum
from typing import Protocol

from rich.console import Console

from chatmux.models.events import (
    CanonicalEvent,
    ReasoningDelta,
    Stop,
    TextDelta,
    ToolCallInputDelta,
    ToolCallStart,
)

REASONING_STYLE = "dim"
TOOL_STYLE = "cyan"


class _Kind(str, enum.Enum):
    REASONING = "reasoning"
    TEXT = "text"
    TOOL = "tool"


class Renderer(Protocol):
    """Anything that can display canonical events."""

    def render(self, event: CanonicalEvent) -> None: ...


class NullRenderer:
    """Renderer that discards everything (silent sessions)."""

    def render(self, event: CanonicalEvent) -> None:
        return None


class StreamRenderer:
    """Writes events as they arrive.

    Reasoning is dim, tool input is echoed in cyan, answer text is plain.
    When the kind of content changes and the last character written was
    not a newline, a newline is written first. Each response ends with
    exactly one newline.

    Args:
        console: Destination. Defaults to a stdout Console.
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console if console is not None else Console(highlight=False)
        self._kind: _Kind | None = None
        self._last = ""

    @property
    def console(self) -> Console:
        return self._console

    def _write(self, text: str, kind: _Kind, style: str | None = None) -> None:
        if not text:
            return
        if self._kind is not None and kind != self._kind and self._last != "\n":
            self._emit("\n")
        self._kind = kind
        self._emit(text, style)

    def _emit(self, text: str, style: str | None = None) -> None:
        self._console.out(text, style=style, highlight=False, end="")
        self._last = text[-1]

    def render(self, event: CanonicalEvent) -> None:
        if isinstance(event, ReasoningDelta):
            self._write(event.text, _Kind.REASONING, REASONING_STYLE)
        elif isinstance(event, TextDelta):
            self._write(event.text, _Kind.TEXT)
        elif isinstance(event, ToolCallStart):
            self._write(f"[{event.name}] ", _Kind.TOOL, TOOL_STYLE)
        elif isinstance(event, ToolCallInputDelta):
            self._write(event.fragment, _Kind.TOOL, TOOL_STYLE)
        elif isinstance(event, Stop):
            if self._kind is not None and self._last != "\n":
                self._emit("\n")
            self._kind = None
            self._last = ""
        # ToolCallDone repeats input already echoed from its fragments.
