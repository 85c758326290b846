"""Canonical stream events.

Every backend's raw frames are normalized into this small set of frozen
dataclasses. A normalized response is a finite sequence of deltas ending in
exactly one Stop.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Union


class StopReason(str, enum.Enum):
    """Why the backend ended a response."""

    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"
    OTHER = "other"


@dataclass(frozen=True)
class ReasoningDelta:
    """A fragment of reasoning output.

    ``signature`` carries a backend integrity token; it may arrive on a
    delta whose text is empty.
    """

    text: str
    signature: str | None = None


@dataclass(frozen=True)
class TextDelta:
    """A fragment of visible answer text."""

    text: str


@dataclass(frozen=True)
class ToolCallStart:
    id: str
    name: str


@dataclass(frozen=True)
class ToolCallInputDelta:
    """A raw JSON fragment of a tool call's input."""

    id: str
    fragment: str


@dataclass(frozen=True)
class ToolCallDone:
    """A complete tool call with its parsed input."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Stop:
    reason: StopReason = StopReason.END_TURN

    @property
    def truncated(self) -> bool:
        return self.reason == StopReason.MAX_TOKENS


CanonicalEvent = Union[
    ReasoningDelta,
    TextDelta,
    ToolCallStart,
    ToolCallInputDelta,
    ToolCallDone,
    Stop,
]
