"""Backend request building.

Turns (turn history, effective config, optional tool schema) into a
BackendRequest whose payload has the exact shape the bound backend family
expects. This is the only module that knows how each family lays out
instructions, reasoning controls, tools and turns on the wire.
"""

from __future__ import annotations

import json
import logging
import types
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from chatmux.backends.profiles import (
    BackendFamily,
    BackendProfile,
    ReasoningStyle,
)
from chatmux.backends.resolver import THINKING_BUDGETS, ThinkingLevel
from chatmux.models.config import EffectiveConfig
from chatmux.models.content import (
    ReasoningBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
)
from chatmux.models.tools import ToolDefinition
from chatmux.tools import native_editor_tool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackendRequest:
    """A backend-shaped request descriptor handed to a transport."""

    family: BackendFamily
    model: str
    payload: dict
    stream: bool = False
    headers: Mapping[str, str] = field(default_factory=lambda: types.MappingProxyType({}))


# ---------------------------------------------------------------------------
# Reasoning budget
# ---------------------------------------------------------------------------


def derive_reasoning_budget(
    requested: int,
    total_budget: int,
    *,
    floor: int,
    reserved: int,
) -> int | None:
    """Derive the reasoning-token budget to send.

    ``max(floor, min(requested, total_budget - reserved))``. Requests above
    the ceiling are clamped. When the total budget leaves less than
    ``floor`` tokens after reserving the answer, reasoning is disabled
    (None) rather than clamped to an unusable value.
    """
    ceiling = total_budget - reserved
    if ceiling < floor:
        return None
    return max(floor, min(requested, ceiling))


def _requested_budget(config: EffectiveConfig) -> int:
    reasoning = config.reasoning
    if reasoning.budget_tokens:
        return reasoning.budget_tokens
    if reasoning.effort:
        try:
            return THINKING_BUDGETS[ThinkingLevel(reasoning.effort)]
        except (ValueError, KeyError):
            pass
    return THINKING_BUDGETS[ThinkingLevel.MEDIUM]


def _budget_for(config: EffectiveConfig, profile: BackendProfile) -> int | None:
    """Reasoning budget for budget-style backends, None when disabled."""
    if config.reasoning is None or profile.reasoning_style != ReasoningStyle.BUDGET:
        return None
    budget = derive_reasoning_budget(
        _requested_budget(config),
        config.max_tokens,
        floor=profile.reasoning_floor,
        reserved=profile.reserved_answer_tokens,
    )
    if budget is None:
        logger.debug(
            "Reasoning disabled: max_tokens=%d leaves no room for a %d-token "
            "reasoning floor plus %d answer tokens",
            config.max_tokens, profile.reasoning_floor, profile.reserved_answer_tokens,
        )
    return budget


def _effort_for(config: EffectiveConfig, profile: BackendProfile) -> str | None:
    if config.reasoning is None or profile.reasoning_style != ReasoningStyle.EFFORT:
        return None
    return config.reasoning.effort or ThinkingLevel.MEDIUM.value


# ---------------------------------------------------------------------------
# History preparation
# ---------------------------------------------------------------------------


def _flatten_tool_block(block: Any) -> Any:
    """Tool blocks as plain text, for requests that offer no tools."""
    if isinstance(block, ToolUseBlock):
        return TextBlock(text=f"[{block.name}] {json.dumps(block.input)}")
    if isinstance(block, ToolResultBlock):
        label = "error" if block.is_error else "result"
        return TextBlock(text=f"[{block.name or block.tool_use_id} {label}] {block.content}")
    return block


def _is_empty(turn: Turn) -> bool:
    if isinstance(turn.content, str):
        return not turn.content
    return not any(
        isinstance(b, (ToolUseBlock, ToolResultBlock)) or (isinstance(b, TextBlock) and b.text)
        for b in turn.content
    )


def prepare_turns(turns: Sequence[Turn], *, keep_tool_blocks: bool) -> list[Turn]:
    """Make stored history safe to send.

    Backends reject tool-use and tool-result blocks in a request that
    defines no tools, so without tools they become text. Assistant turns
    with nothing visible (a response that was only tool calls) are
    dropped, and the neighbours this leaves with the same role are merged.
    """
    prepared: list[Turn] = []
    for turn in turns:
        if not keep_tool_blocks and not isinstance(turn.content, str):
            turn = Turn(role=turn.role, content=tuple(map(_flatten_tool_block, turn.content)))
        if turn.role == "assistant" and _is_empty(turn):
            continue
        if prepared and prepared[-1].role == turn.role:
            previous = prepared.pop()
            if _is_empty(previous):
                prepared.append(turn)
                continue
            turn = Turn(role=turn.role, content=previous.blocks + turn.blocks)
        prepared.append(turn)
    return prepared


# ---------------------------------------------------------------------------
# Anthropic Messages
# ---------------------------------------------------------------------------


def _anthropic_block(block: Any) -> dict | None:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ReasoningBlock):
        # Thinking can only be replayed with its signature.
        if not block.signature:
            return None
        return {"type": "thinking", "thinking": block.text, "signature": block.signature}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content,
            "is_error": block.is_error,
        }
    return None


def _anthropic_messages(turns: Sequence[Turn]) -> list[dict]:
    messages: list[dict] = []
    for turn in turns:
        if isinstance(turn.content, str):
            messages.append({"role": turn.role, "content": turn.content})
            continue
        blocks = [b for b in map(_anthropic_block, turn.content) if b is not None]
        messages.append({"role": turn.role, "content": blocks})
    return messages


def build_anthropic_request(
    profile: BackendProfile,
    config: EffectiveConfig,
    turns: Sequence[Turn],
    tools: Sequence[ToolDefinition] | None = None,
    *,
    emulate: bool = False,
) -> dict:
    payload: dict[str, Any] = {
        "model": config.model,
        "max_tokens": config.max_tokens,
        "stream": config.stream,
        "messages": _anthropic_messages(turns),
    }
    if config.system:
        if config.cacheable and profile.supports_caching:
            payload["system"] = [{
                "type": "text",
                "text": config.system,
                "cache_control": {"type": "ephemeral"},
            }]
        else:
            payload["system"] = config.system
    if config.fast:
        payload["speed"] = "fast"

    budget = _budget_for(config, profile)
    if budget is not None:
        payload["thinking"] = {"type": "enabled", "budget_tokens": budget}
        if config.reasoning.effort:
            payload["output_config"] = {"effort": config.reasoning.effort}
    elif config.temperature is not None:
        payload["temperature"] = config.temperature

    if tools:
        if emulate:
            payload["tools"] = [native_editor_tool()]
        else:
            payload["tools"] = [t.to_anthropic() for t in tools]
    return payload


# ---------------------------------------------------------------------------
# OpenAI Chat Completions (and compatible vendors)
# ---------------------------------------------------------------------------


def _openai_chat_messages(turns: Sequence[Turn]) -> list[dict]:
    messages: list[dict] = []
    for turn in turns:
        if isinstance(turn.content, str):
            messages.append({"role": turn.role, "content": turn.content})
            continue
        if turn.role == "assistant":
            text = "".join(b.text for b in turn.content if isinstance(b, TextBlock))
            msg: dict[str, Any] = {"role": "assistant", "content": text or None}
            calls = [
                {
                    "id": b.id,
                    "type": "function",
                    "function": {"name": b.name, "arguments": json.dumps(b.input)},
                }
                for b in turn.content
                if isinstance(b, ToolUseBlock)
            ]
            if calls:
                msg["tool_calls"] = calls
            messages.append(msg)
            continue
        text_parts: list[str] = []
        for b in turn.content:
            if isinstance(b, ToolResultBlock):
                messages.append({"role": "tool", "tool_call_id": b.tool_use_id, "content": b.content})
            elif isinstance(b, TextBlock):
                text_parts.append(b.text)
        if text_parts:
            messages.append({"role": "user", "content": "\n\n".join(text_parts)})
    return messages


def build_openai_chat_request(
    profile: BackendProfile,
    config: EffectiveConfig,
    turns: Sequence[Turn],
    tools: Sequence[ToolDefinition] | None = None,
    *,
    emulate: bool = False,
) -> dict:
    messages = _openai_chat_messages(turns)
    if config.system:
        messages.insert(0, {"role": "system", "content": config.system})

    payload: dict[str, Any] = {
        "model": config.model,
        "max_tokens": config.max_tokens,
        "stream": config.stream,
        "messages": messages,
    }
    effort = _effort_for(config, profile)
    if effort is not None:
        payload["reasoning_effort"] = effort
    elif config.temperature is not None:
        payload["temperature"] = config.temperature
    if tools:
        payload["tools"] = [t.to_openai() for t in tools]
    return payload


# ---------------------------------------------------------------------------
# OpenAI Responses
# ---------------------------------------------------------------------------


def _responses_input(turns: Sequence[Turn]) -> list[dict]:
    items: list[dict] = []
    for turn in turns:
        text_type = "output_text" if turn.role == "assistant" else "input_text"
        if isinstance(turn.content, str):
            items.append({
                "type": "message",
                "role": turn.role,
                "content": [{"type": text_type, "text": turn.content}],
            })
            continue
        texts: list[dict] = []
        for b in turn.content:
            if isinstance(b, TextBlock):
                texts.append({"type": text_type, "text": b.text})
                continue
            if texts and isinstance(b, (ToolUseBlock, ToolResultBlock)):
                items.append({"type": "message", "role": turn.role, "content": texts})
                texts = []
            if isinstance(b, ToolUseBlock):
                items.append({
                    "type": "function_call",
                    "call_id": b.id,
                    "name": b.name,
                    "arguments": json.dumps(b.input),
                })
            elif isinstance(b, ToolResultBlock):
                items.append({
                    "type": "function_call_output",
                    "call_id": b.tool_use_id,
                    "output": b.content,
                })
        if texts:
            items.append({"type": "message", "role": turn.role, "content": texts})
    return items


def build_responses_request(
    profile: BackendProfile,
    config: EffectiveConfig,
    turns: Sequence[Turn],
    tools: Sequence[ToolDefinition] | None = None,
    *,
    emulate: bool = False,
) -> dict:
    payload: dict[str, Any] = {
        "model": config.model,
        "max_output_tokens": config.max_tokens,
        "stream": config.stream,
        "input": _responses_input(turns),
    }
    if config.system:
        payload["instructions"] = config.system
    effort = _effort_for(config, profile)
    if effort is not None:
        payload["reasoning"] = {
            "effort": effort,
            "summary": config.reasoning.summary or "auto",
        }
    elif config.temperature is not None:
        payload["temperature"] = config.temperature
    if tools:
        payload["tools"] = [t.to_responses() for t in tools]
    return payload


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


def _gemini_part(block: Any) -> dict | None:
    if isinstance(block, TextBlock):
        return {"text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"functionCall": {"name": block.name, "args": block.input}}
    if isinstance(block, ToolResultBlock):
        return {
            "functionResponse": {
                "name": block.name or block.tool_use_id,
                "response": {"content": block.content, "is_error": block.is_error},
            }
        }
    return None


def _gemini_parts(blocks: Sequence[Any]) -> list[dict]:
    """Parts for one turn.

    Thought text is not replayed. A reasoning signature goes back on the
    part that follows it, or on an empty text part when nothing does.
    """
    parts: list[dict] = []
    signature: str | None = None
    for block in blocks:
        if isinstance(block, ReasoningBlock):
            signature = block.signature or signature
            continue
        part = _gemini_part(block)
        if part is None:
            continue
        if signature:
            part["thoughtSignature"] = signature
            signature = None
        parts.append(part)
    if signature:
        parts.append({"text": "", "thoughtSignature": signature})
    return parts


def _gemini_contents(turns: Sequence[Turn]) -> list[dict]:
    contents: list[dict] = []
    for turn in turns:
        role = "model" if turn.role == "assistant" else "user"
        if isinstance(turn.content, str):
            parts = [{"text": turn.content}]
        else:
            parts = _gemini_parts(turn.content)
        contents.append({"role": role, "parts": parts})
    return contents


def build_gemini_request(
    profile: BackendProfile,
    config: EffectiveConfig,
    turns: Sequence[Turn],
    tools: Sequence[ToolDefinition] | None = None,
    *,
    emulate: bool = False,
) -> dict:
    generation: dict[str, Any] = {"maxOutputTokens": config.max_tokens}
    budget = _budget_for(config, profile)
    if budget is not None:
        generation["thinkingConfig"] = {"thinkingBudget": budget, "includeThoughts": True}
    elif config.temperature is not None:
        generation["temperature"] = config.temperature

    payload: dict[str, Any] = {
        "contents": _gemini_contents(turns),
        "generationConfig": generation,
    }
    if config.system:
        payload["systemInstruction"] = {"parts": [{"text": config.system}]}
    if tools:
        payload["tools"] = [{"functionDeclarations": [t.to_gemini() for t in tools]}]
    return payload


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

_BUILDERS: dict[BackendFamily, Callable[..., dict]] = {
    BackendFamily.ANTHROPIC: build_anthropic_request,
    BackendFamily.OPENAI_CHAT: build_openai_chat_request,
    BackendFamily.OPENAI_RESPONSES: build_responses_request,
    BackendFamily.GEMINI: build_gemini_request,
}


def build_request(
    profile: BackendProfile,
    config: EffectiveConfig,
    turns: Sequence[Turn],
    tools: Sequence[ToolDefinition] | None = None,
    *,
    emulate: bool = False,
) -> BackendRequest:
    """Build the request for ``profile``'s backend family.

    Args:
        profile: The bound backend profile.
        config: Effective configuration for this call.
        turns: Conversation history, oldest first. The pinned instruction
            is taken from ``config.system``, never from the turns.
        tools: Caller tool definitions, or None for plain mode.
        emulate: Substitute the backend's bundled editor tool for the two
            generic editor tools.
    """
    turns = prepare_turns(turns, keep_tool_blocks=bool(tools))
    payload = _BUILDERS[profile.family](profile, config, turns, tools, emulate=emulate)
    if config.extra:
        payload.update(config.extra)
    logger.debug(
        "Built %s request: model=%s turns=%d tools=%d stream=%s",
        profile.family.value, config.model, len(turns), len(tools or ()), config.stream,
    )
    return BackendRequest(
        family=profile.family,
        model=config.model,
        payload=payload,
        stream=config.stream,
        headers=profile.headers,
    )
