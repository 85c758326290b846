"""Conversation content models.

Defines the four structured block types as Pydantic models with a
discriminated union (ContentBlock), and the Turn model that the session
history is made of. A turn's content is either plain text or an ordered
tuple of blocks.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


# ---------------------------------------------------------------------------
# Block models
# ---------------------------------------------------------------------------


class TextBlock(BaseModel):
    """Visible answer text."""

    model_config = {"frozen": True}

    type: Literal["text"] = "text"
    text: str


class ReasoningBlock(BaseModel):
    """Reasoning/thinking output.

    ``signature`` is the opaque integrity token some backends attach to
    thinking output; it must be echoed back verbatim on later requests.
    """

    model_config = {"frozen": True}

    type: Literal["reasoning"] = "reasoning"
    text: str
    signature: str | None = None


class ToolUseBlock(BaseModel):
    """A tool invocation as emitted by the backend (backend-native name)."""

    model_config = {"frozen": True}

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """The result fed back for a previous ToolUseBlock."""

    model_config = {"frozen": True}

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False
    # Backend-native name of the tool being answered. Gemini keys function
    # responses by name rather than id.
    name: str | None = None


ContentBlock = Annotated[
    Union[TextBlock, ReasoningBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]

_block_adapter = TypeAdapter(ContentBlock)


def validate_block(data: dict) -> BaseModel:
    """Validate a raw block dict against the ContentBlock union."""
    return _block_adapter.validate_python(data)


# ---------------------------------------------------------------------------
# Turn
# ---------------------------------------------------------------------------


class Turn(BaseModel):
    """One user or assistant message in the session history."""

    model_config = {"frozen": True}

    role: Literal["user", "assistant"]
    content: Union[str, tuple[ContentBlock, ...]]

    @property
    def blocks(self) -> tuple[BaseModel, ...]:
        """Content as blocks; plain text becomes a single TextBlock."""
        if isinstance(self.content, str):
            return (TextBlock(text=self.content),) if self.content else ()
        return self.content

    @property
    def text(self) -> str:
        """Concatenated visible text of this turn (reasoning excluded)."""
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    def to_dict(self) -> dict:
        """Plain-dict form, e.g. for JSON dumps by an external caller."""
        return self.model_dump(mode="json")
