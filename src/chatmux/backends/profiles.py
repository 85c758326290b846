"""Capability-tagged backend profiles.

A BackendProfile is chosen once, when a session is constructed, and tells
every other component what the bound backend can do: which wire protocol it
speaks, where the pinned instruction goes, whether and how reasoning is
requested, whether the bundled editor tool exists, and the vendor defaults.
Nothing downstream inspects model-name strings.
"""

from __future__ import annotations

import enum
import types
from dataclasses import dataclass, field
from typing import Mapping

from chatmux.models.config import ChatConfig, ReasoningConfig


class BackendFamily(str, enum.Enum):
    """Wire protocol spoken by a backend."""

    ANTHROPIC = "anthropic"
    OPENAI_CHAT = "openai_chat"
    OPENAI_RESPONSES = "openai_responses"
    GEMINI = "gemini"


class InstructionPlacement(str, enum.Enum):
    """Where the pinned system instruction goes on the wire."""

    SYSTEM_FIELD = "system_field"              # top-level "system" (Anthropic)
    SYSTEM_MESSAGE = "system_message"          # leading role=system message
    INSTRUCTIONS_FIELD = "instructions_field"  # top-level "instructions" (Responses)
    SYSTEM_INSTRUCTION = "system_instruction"  # "systemInstruction" (Gemini)


class ReasoningStyle(str, enum.Enum):
    """How reasoning is requested."""

    NONE = "none"        # no request-level control (model may still reason)
    BUDGET = "budget"    # explicit token budget
    EFFORT = "effort"    # low/medium/high effort knob


@dataclass(frozen=True)
class BackendProfile:
    """Capabilities and defaults of one bound backend.

    Attributes:
        vendor: Vendor key (``anthropic``, ``openai``, ``google``, ...).
        model: Model id sent on the wire.
        family: Wire protocol.
        base_url: API root.
        api_key_env: Environment variables searched for the API key, in order.
        instruction_placement: Wire placement of the pinned instruction.
        reasoning_style: How reasoning is requested, if at all.
        supports_native_editor: Whether the backend ships a bundled
            file-editing tool that the two generic editor tools can map onto.
        supports_caching: Whether the pinned instruction can be marked cacheable.
        reasoning_floor: Smallest reasoning budget the backend accepts.
        reserved_answer_tokens: Output tokens kept back for the answer when
            deriving a reasoning budget.
        default_max_tokens: Output-token budget for plain calls.
        tool_max_tokens: Output-token budget for tool-mode calls.
        default_temperature: Vendor default temperature (None = omit).
        default_reasoning: Reasoning requested by the model spec, if any.
        fast: Fast-mode flag from the model spec (Anthropic only).
        headers: Extra HTTP headers for every request.
    """

    vendor: str
    model: str
    family: BackendFamily
    base_url: str
    api_key_env: tuple[str, ...]
    instruction_placement: InstructionPlacement
    reasoning_style: ReasoningStyle = ReasoningStyle.NONE
    supports_native_editor: bool = False
    supports_caching: bool = False
    reasoning_floor: int = 0
    reserved_answer_tokens: int = 0
    default_max_tokens: int = 8192
    tool_max_tokens: int = 8192
    default_temperature: float | None = None
    default_reasoning: ReasoningConfig | None = None
    fast: bool = False
    headers: Mapping[str, str] = field(default_factory=lambda: types.MappingProxyType({}))

    @property
    def supports_reasoning(self) -> bool:
        return self.reasoning_style != ReasoningStyle.NONE

    def defaults(self, *, tool_mode: bool = False) -> ChatConfig:
        """Vendor-default config layer for this profile."""
        return ChatConfig(
            model=self.model,
            temperature=self.default_temperature,
            max_tokens=self.tool_max_tokens if tool_mode else self.default_max_tokens,
            stream=not tool_mode,
            reasoning=self.default_reasoning if self.supports_reasoning else None,
        )
