"""Stream normalization.

Each backend family delivers its output as a sequence of raw frames (SSE
event payloads, already JSON-decoded). The normalizers here consume such a
sequence lazily and yield canonical events, preserving the order of
reasoning, text and tool fragments and ending with exactly one Stop.

Non-streaming responses go through the same normalizers:
:func:`message_to_frames` rewrites a complete message as the frame
sequence the backend would have streamed.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Iterable, Iterator

from chatmux.backends.profiles import BackendFamily
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

logger = logging.getLogger(__name__)

_ANTHROPIC_STOP = {
    "end_turn": StopReason.END_TURN,
    "stop_sequence": StopReason.END_TURN,
    "pause_turn": StopReason.END_TURN,
    "max_tokens": StopReason.MAX_TOKENS,
    "model_context_window_exceeded": StopReason.MAX_TOKENS,
    "tool_use": StopReason.TOOL_USE,
}

_OPENAI_STOP = {
    "stop": StopReason.END_TURN,
    "length": StopReason.MAX_TOKENS,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
}

_GEMINI_STOP = {
    "STOP": StopReason.END_TURN,
    "MAX_TOKENS": StopReason.MAX_TOKENS,
}


def parse_tool_input(raw: str, name: str = "") -> dict[str, Any]:
    """Parse accumulated tool-input JSON.

    Empty input is ``{}``; malformed or non-object JSON is kept verbatim
    under ``"_raw"`` so the normalizer downstream can reject it.
    """
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Malformed JSON in tool call input for %s", name or "<unnamed>")
        return {"_raw": raw}
    if not isinstance(parsed, dict):
        logger.warning("Tool call input for %s is not an object", name or "<unnamed>")
        return {"_raw": raw}
    return parsed


# ---------------------------------------------------------------------------
# Anthropic Messages
# ---------------------------------------------------------------------------


def normalize_anthropic(frames: Iterable[dict]) -> Iterator[CanonicalEvent]:
    """Normalize Anthropic Messages stream events."""
    tools: dict[int, tuple[str, str, list[str]]] = {}
    reason = StopReason.END_TURN
    for frame in frames:
        kind = frame.get("type")
        if kind == "content_block_start":
            block = frame.get("content_block") or {}
            if block.get("type") == "tool_use":
                call_id = block.get("id") or ""
                name = block.get("name") or ""
                tools[frame.get("index", 0)] = (call_id, name, [])
                yield ToolCallStart(id=call_id, name=name)
        elif kind == "content_block_delta":
            delta = frame.get("delta") or {}
            dtype = delta.get("type")
            if dtype == "text_delta":
                if delta.get("text"):
                    yield TextDelta(delta["text"])
            elif dtype == "thinking_delta":
                if delta.get("thinking"):
                    yield ReasoningDelta(delta["thinking"])
            elif dtype == "signature_delta":
                yield ReasoningDelta("", signature=delta.get("signature"))
            elif dtype == "input_json_delta":
                entry = tools.get(frame.get("index", 0))
                fragment = delta.get("partial_json") or ""
                if entry is not None and fragment:
                    entry[2].append(fragment)
                    yield ToolCallInputDelta(id=entry[0], fragment=fragment)
        elif kind == "content_block_stop":
            entry = tools.pop(frame.get("index", 0), None)
            if entry is not None:
                call_id, name, parts = entry
                yield ToolCallDone(id=call_id, name=name, input=parse_tool_input("".join(parts), name))
        elif kind == "message_delta":
            stop = (frame.get("delta") or {}).get("stop_reason")
            if stop:
                reason = _ANTHROPIC_STOP.get(stop, StopReason.OTHER)
    yield Stop(reason)


def _anthropic_message_frames(message: dict) -> list[dict]:
    frames: list[dict] = [{"type": "message_start", "message": {k: v for k, v in message.items() if k != "content"}}]
    for index, block in enumerate(message.get("content") or []):
        btype = block.get("type")
        if btype == "text":
            frames.append({"type": "content_block_start", "index": index, "content_block": {"type": "text", "text": ""}})
            frames.append({"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": block.get("text", "")}})
        elif btype == "thinking":
            frames.append({"type": "content_block_start", "index": index, "content_block": {"type": "thinking", "thinking": ""}})
            frames.append({"type": "content_block_delta", "index": index, "delta": {"type": "thinking_delta", "thinking": block.get("thinking", "")}})
            if block.get("signature"):
                frames.append({"type": "content_block_delta", "index": index, "delta": {"type": "signature_delta", "signature": block["signature"]}})
        elif btype == "tool_use":
            frames.append({
                "type": "content_block_start",
                "index": index,
                "content_block": {"type": "tool_use", "id": block.get("id"), "name": block.get("name"), "input": {}},
            })
            frames.append({
                "type": "content_block_delta",
                "index": index,
                "delta": {"type": "input_json_delta", "partial_json": json.dumps(block.get("input") or {})},
            })
        else:
            continue
        frames.append({"type": "content_block_stop", "index": index})
    frames.append({"type": "message_delta", "delta": {"stop_reason": message.get("stop_reason")}})
    frames.append({"type": "message_stop"})
    return frames


# ---------------------------------------------------------------------------
# OpenAI Chat Completions
# ---------------------------------------------------------------------------


def normalize_openai_chat(frames: Iterable[dict]) -> Iterator[CanonicalEvent]:
    """Normalize Chat Completions chunks (OpenAI and compatible vendors).

    Tool calls are keyed by their ``index``; each completes when the
    stream ends, since chunks carry no per-call terminator.
    """
    calls: dict[int, list] = {}
    reason = StopReason.END_TURN
    for frame in frames:
        choices = frame.get("choices") or []
        if not choices:
            continue
        choice = choices[0]
        delta = choice.get("delta") or {}
        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        if reasoning:
            yield ReasoningDelta(reasoning)
        if delta.get("content"):
            yield TextDelta(delta["content"])
        for raw in delta.get("tool_calls") or []:
            index = raw.get("index", 0)
            function = raw.get("function") or {}
            entry = calls.get(index)
            if entry is None:
                entry = [raw.get("id") or f"call_{index}", function.get("name") or "", []]
                calls[index] = entry
                yield ToolCallStart(id=entry[0], name=entry[1])
            elif function.get("name") and not entry[1]:
                entry[1] = function["name"]
            fragment = function.get("arguments") or ""
            if fragment:
                entry[2].append(fragment)
                yield ToolCallInputDelta(id=entry[0], fragment=fragment)
        finish = choice.get("finish_reason")
        if finish:
            reason = _OPENAI_STOP.get(finish, StopReason.OTHER)
    for index in sorted(calls):
        call_id, name, parts = calls[index]
        yield ToolCallDone(id=call_id, name=name, input=parse_tool_input("".join(parts), name))
    yield Stop(reason)


def _openai_chat_message_frames(message: dict) -> list[dict]:
    choices = message.get("choices") or []
    if not choices:
        return []
    choice = choices[0]
    msg = choice.get("message") or {}
    delta: dict[str, Any] = {}
    reasoning = msg.get("reasoning_content") or msg.get("reasoning")
    if reasoning:
        delta["reasoning_content"] = reasoning
    if msg.get("content"):
        delta["content"] = msg["content"]
    if msg.get("tool_calls"):
        delta["tool_calls"] = [
            {"index": i, "id": tc.get("id"), "function": tc.get("function") or {}}
            for i, tc in enumerate(msg["tool_calls"])
        ]
    return [{"choices": [{"index": 0, "delta": delta, "finish_reason": choice.get("finish_reason")}]}]


# ---------------------------------------------------------------------------
# OpenAI Responses
# ---------------------------------------------------------------------------


def normalize_responses(frames: Iterable[dict]) -> Iterator[CanonicalEvent]:
    """Normalize Responses API stream events.

    Only delta events produce output. Completion events
    (``*.done``, ``response.completed``) repeat text that was already
    streamed and are used for bookkeeping only.
    """
    item_calls: dict[str, tuple[str, str]] = {}
    saw_tool = False
    reason = StopReason.END_TURN
    for frame in frames:
        kind = frame.get("type", "")
        if kind == "response.reasoning_summary_part.added":
            if frame.get("summary_index", 0) > 0:
                yield ReasoningDelta("\n\n")
        elif kind == "response.reasoning_summary_text.delta":
            if frame.get("delta"):
                yield ReasoningDelta(frame["delta"])
        elif kind == "response.output_text.delta":
            if frame.get("delta"):
                yield TextDelta(frame["delta"])
        elif kind == "response.output_item.added":
            item = frame.get("item") or {}
            if item.get("type") == "function_call":
                call_id = item.get("call_id") or item.get("id") or ""
                item_calls[item.get("id") or call_id] = (call_id, item.get("name") or "")
                yield ToolCallStart(id=call_id, name=item.get("name") or "")
        elif kind == "response.function_call_arguments.delta":
            entry = item_calls.get(frame.get("item_id") or "")
            if entry is not None and frame.get("delta"):
                yield ToolCallInputDelta(id=entry[0], fragment=frame["delta"])
        elif kind == "response.output_item.done":
            item = frame.get("item") or {}
            if item.get("type") == "function_call":
                call_id, name = item_calls.pop(
                    item.get("id") or "", (item.get("call_id") or "", item.get("name") or "")
                )
                saw_tool = True
                yield ToolCallDone(
                    id=call_id,
                    name=name or item.get("name") or "",
                    input=parse_tool_input(item.get("arguments") or "", name),
                )
        elif kind == "response.incomplete":
            details = (frame.get("response") or {}).get("incomplete_details") or {}
            reason = (
                StopReason.MAX_TOKENS
                if details.get("reason") == "max_output_tokens"
                else StopReason.OTHER
            )
        elif kind == "response.completed":
            reason = StopReason.TOOL_USE if saw_tool else StopReason.END_TURN
        elif kind == "response.failed":
            reason = StopReason.OTHER
    yield Stop(reason)


def _responses_message_frames(response: dict) -> list[dict]:
    frames: list[dict] = []
    for item in response.get("output") or []:
        itype = item.get("type")
        if itype == "reasoning":
            for index, part in enumerate(item.get("summary") or []):
                if part.get("type") == "summary_text" and part.get("text"):
                    frames.append({"type": "response.reasoning_summary_part.added", "summary_index": index})
                    frames.append({"type": "response.reasoning_summary_text.delta", "summary_index": index, "delta": part["text"]})
        elif itype == "message":
            for part in item.get("content") or []:
                if part.get("type") == "output_text" and part.get("text"):
                    frames.append({"type": "response.output_text.delta", "delta": part["text"]})
        elif itype == "function_call":
            frames.append({"type": "response.output_item.added", "item": {**item, "arguments": ""}})
            frames.append({"type": "response.output_item.done", "item": item})
    status = response.get("status")
    if status == "incomplete":
        frames.append({"type": "response.incomplete", "response": response})
    elif status == "failed":
        frames.append({"type": "response.failed", "response": response})
    else:
        frames.append({"type": "response.completed", "response": response})
    return frames


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


def normalize_gemini(frames: Iterable[dict]) -> Iterator[CanonicalEvent]:
    """Normalize Gemini GenerateContentResponse chunks.

    Gemini delivers function calls whole, so each produces start, one
    input fragment and done back to back.
    """
    call_count = 0
    reason = StopReason.END_TURN
    saw_tool = False
    for frame in frames:
        candidates = frame.get("candidates") or []
        if not candidates:
            continue
        candidate = candidates[0]
        for part in (candidate.get("content") or {}).get("parts") or []:
            # Any part may carry a signature, most often the first call.
            signature = part.get("thoughtSignature")
            if signature:
                yield ReasoningDelta("", signature=signature)
            if "functionCall" in part:
                call = part["functionCall"] or {}
                name = call.get("name") or ""
                call_id = call.get("id") or f"{name}_{call_count}"
                call_count += 1
                args = call.get("args") or {}
                saw_tool = True
                yield ToolCallStart(id=call_id, name=name)
                yield ToolCallInputDelta(id=call_id, fragment=json.dumps(args))
                yield ToolCallDone(id=call_id, name=name, input=dict(args))
            elif part.get("text"):
                if part.get("thought"):
                    yield ReasoningDelta(part["text"])
                else:
                    yield TextDelta(part["text"])
        finish = candidate.get("finishReason")
        if finish:
            reason = _GEMINI_STOP.get(finish, StopReason.OTHER)
    if saw_tool and reason == StopReason.END_TURN:
        reason = StopReason.TOOL_USE
    yield Stop(reason)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

_NORMALIZERS: dict[BackendFamily, Callable[[Iterable[dict]], Iterator[CanonicalEvent]]] = {
    BackendFamily.ANTHROPIC: normalize_anthropic,
    BackendFamily.OPENAI_CHAT: normalize_openai_chat,
    BackendFamily.OPENAI_RESPONSES: normalize_responses,
    BackendFamily.GEMINI: normalize_gemini,
}

_MESSAGE_FRAMES: dict[BackendFamily, Callable[[dict], list[dict]]] = {
    BackendFamily.ANTHROPIC: _anthropic_message_frames,
    BackendFamily.OPENAI_CHAT: _openai_chat_message_frames,
    BackendFamily.OPENAI_RESPONSES: _responses_message_frames,
    BackendFamily.GEMINI: lambda message: [message],
}


def normalize_frames(family: BackendFamily, frames: Iterable[dict]) -> Iterator[CanonicalEvent]:
    """Normalize a raw frame sequence from a ``family`` backend.

    The result is a lazy, single-pass iterator.
    """
    return _NORMALIZERS[family](frames)


def message_to_frames(family: BackendFamily, message: dict) -> list[dict]:
    """Rewrite a complete (non-streamed) message as its frame sequence."""
    return _MESSAGE_FRAMES[family](message)
