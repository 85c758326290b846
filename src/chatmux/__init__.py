"""Chatmux: one chat and tool-calling session over many LLM backends.

Anthropic, OpenAI (Chat Completions and Responses), OpenAI-compatible
vendors and Gemini are driven through the same ``ask``/``ask_tools``
surface, with their streams normalized into one event vocabulary.
"""

from chatmux._version import __version__

# Sessions
from chatmux.session import ChatSession, SessionState, open_session

# Backends
from chatmux.backends import (
    MODEL_ALIASES,
    BackendFamily,
    BackendProfile,
    InstructionPlacement,
    ModelSpec,
    ReasoningStyle,
    ThinkingLevel,
    parse_model_spec,
    resolve_backend,
)

# Content, events, tools and configuration
from chatmux.models import (
    CanonicalEvent,
    ChatConfig,
    EffectiveConfig,
    ReasoningBlock,
    ReasoningConfig,
    ReasoningDelta,
    Stop,
    StopReason,
    TextBlock,
    TextDelta,
    ToolCall,
    ToolCallDone,
    ToolCallInputDelta,
    ToolCallStart,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
    merge_configs,
    resolve_config,
)

# Round-trip loop and rendering
from chatmux.loop import MAX_ROUNDS, RoundOutcome, RoundtripResult, run_roundtrip
from chatmux.render import NullRenderer, StreamRenderer

# Request building and normalization
from chatmux.request import BackendRequest, build_request, derive_reasoning_budget
from chatmux.stream import message_to_frames, normalize_frames
from chatmux.tools import normalize_tool_use, uses_native_editor

# Transports
from chatmux.transport import Transport, transport_for

# Exceptions
from chatmux.exceptions import (
    ChatmuxError,
    ModelSpecError,
    NormalizationError,
    TruncationWarning,
)
from chatmux.transport.errors import (
    TransportAuthError,
    TransportConfigError,
    TransportError,
    TransportRateLimitError,
    TransportResponseError,
)

from chatmux.tokens import count_tokens, count_turns

__all__ = [
    "__version__",
    # Sessions
    "ChatSession",
    "SessionState",
    "open_session",
    # Backends
    "MODEL_ALIASES",
    "BackendFamily",
    "BackendProfile",
    "InstructionPlacement",
    "ModelSpec",
    "ReasoningStyle",
    "ThinkingLevel",
    "parse_model_spec",
    "resolve_backend",
    # Models
    "CanonicalEvent",
    "ChatConfig",
    "EffectiveConfig",
    "ReasoningBlock",
    "ReasoningConfig",
    "ReasoningDelta",
    "Stop",
    "StopReason",
    "TextBlock",
    "TextDelta",
    "ToolCall",
    "ToolCallDone",
    "ToolCallInputDelta",
    "ToolCallStart",
    "ToolDefinition",
    "ToolResultBlock",
    "ToolUseBlock",
    "Turn",
    "merge_configs",
    "resolve_config",
    # Loop and rendering
    "MAX_ROUNDS",
    "RoundOutcome",
    "RoundtripResult",
    "run_roundtrip",
    "NullRenderer",
    "StreamRenderer",
    # Requests and normalization
    "BackendRequest",
    "build_request",
    "derive_reasoning_budget",
    "message_to_frames",
    "normalize_frames",
    "normalize_tool_use",
    "uses_native_editor",
    # Transports
    "Transport",
    "transport_for",
    # Exceptions
    "ChatmuxError",
    "ModelSpecError",
    "NormalizationError",
    "TruncationWarning",
    "TransportAuthError",
    "TransportConfigError",
    "TransportError",
    "TransportRateLimitError",
    "TransportResponseError",
    # Tokens
    "count_tokens",
    "count_turns",
]
