"""Data models: content blocks and turns, canonical events, tools, config."""

from chatmux.models.config import (
    ChatConfig,
    EffectiveConfig,
    ReasoningConfig,
    merge_configs,
    resolve_config,
)
from chatmux.models.content import (
    ContentBlock,
    ReasoningBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
    validate_block,
)
from chatmux.models.events import (
    CanonicalEvent,
    ReasoningDelta,
    Stop,
    StopReason,
    TextDelta,
    ToolCallDone,
    ToolCallInputDelta,
    ToolCallStart,
)
from chatmux.models.tools import ToolCall, ToolDefinition

__all__ = [
    "ChatConfig",
    "EffectiveConfig",
    "ReasoningConfig",
    "merge_configs",
    "resolve_config",
    "ContentBlock",
    "ReasoningBlock",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "Turn",
    "validate_block",
    "CanonicalEvent",
    "ReasoningDelta",
    "Stop",
    "StopReason",
    "TextDelta",
    "ToolCallDone",
    "ToolCallInputDelta",
    "ToolCallStart",
    "ToolCall",
    "ToolDefinition",
]
