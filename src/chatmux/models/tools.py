"""Tool definition and tool call models.

Frozen dataclasses for the caller-supplied tool schema and the canonical
tool call surfaced back to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

_EMPTY_SCHEMA: dict = {"type": "object", "properties": {}}


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the caller offers to the backend.

    Attributes:
        name: Tool name, unique within one call.
        description: Human-readable description of when/why to use the tool.
        input_schema: JSON Schema dict describing the tool's input.
    """

    name: str
    description: str = ""
    input_schema: dict = field(default_factory=lambda: dict(_EMPTY_SCHEMA))

    @classmethod
    def from_dict(cls, d: dict) -> ToolDefinition:
        """Build from a loose dict (accepts ``inputSchema``/``parameters``)."""
        schema = d.get("input_schema") or d.get("inputSchema") or d.get("parameters")
        return cls(
            name=d["name"],
            description=d.get("description", ""),
            input_schema=schema or dict(_EMPTY_SCHEMA),
        )

    def to_anthropic(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    def to_openai(self) -> dict:
        """OpenAI Chat Completions function-calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }

    def to_responses(self) -> dict:
        """OpenAI Responses API format (flat function tool)."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.input_schema,
        }

    def to_gemini(self) -> dict:
        """Gemini function declaration."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.input_schema,
        }


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the backend, in caller terms.

    ``name`` is always one of the caller's tool names; ``id`` is the
    backend's call id when it provides one.
    """

    name: str
    input: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    def to_dict(self) -> dict:
        d: dict = {"name": self.name, "input": dict(self.input)}
        if self.id is not None:
            d["id"] = self.id
        return d
