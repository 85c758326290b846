"""Tool-use normalization and native editor emulation.

Backends report tool use in their own shapes; this module turns one
backend tool-use block into a canonical ToolCall, or raises
NormalizationError.

When the caller's tool set is exactly the two generic editing tools
(``str_replace`` and ``create_file``) and the backend bundles its own
file-editing tool, the bundled tool is offered instead and its commands are
mapped back onto the generic tools here. Only two commands map; viewing
or listing files is disabled because the caller already supplies the
file contents.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from chatmux.exceptions import NormalizationError
from chatmux.models.content import ToolResultBlock, ToolUseBlock
from chatmux.models.tools import ToolCall, ToolDefinition

logger = logging.getLogger(__name__)

STR_REPLACE_TOOL = "str_replace"
CREATE_FILE_TOOL = "create_file"
EDITOR_TOOL_NAMES = frozenset({STR_REPLACE_TOOL, CREATE_FILE_TOOL})

NATIVE_EDITOR_NAME = "str_replace_based_edit_tool"
NATIVE_EDITOR_TYPE = "text_editor_20250728"

# native command -> (generic tool, required string fields)
_EDITOR_COMMANDS: dict[str, tuple[str, tuple[str, ...]]] = {
    "str_replace": (STR_REPLACE_TOOL, ("path", "old_str", "new_str")),
    "create": (CREATE_FILE_TOOL, ("path", "file_text")),
}


def uses_native_editor(tools: Sequence[ToolDefinition]) -> bool:
    """True when ``tools`` is exactly the two generic editing tools.

    Any other set, including one that adds a third tool or repeats a
    name, takes the generic path.
    """
    if len(tools) != 2:
        return False
    return {t.name for t in tools} == EDITOR_TOOL_NAMES


def native_editor_tool() -> dict:
    """Anthropic wire definition of the bundled editor tool."""
    return {"type": NATIVE_EDITOR_TYPE, "name": NATIVE_EDITOR_NAME}


def is_emulated(block: ToolUseBlock, *, emulate: bool) -> bool:
    """Whether ``block`` goes through the emulation path."""
    return emulate and block.name == NATIVE_EDITOR_NAME


def _normalize_editor_command(block: ToolUseBlock) -> ToolCall:
    payload: dict[str, Any] = block.input or {}
    command = payload.get("command")
    if not isinstance(command, str) or not command:
        raise NormalizationError(f"{NATIVE_EDITOR_NAME}: missing 'command'")

    mapping = _EDITOR_COMMANDS.get(command)
    if mapping is None:
        raise NormalizationError(
            f"The '{command}' command is disabled. The full contents of the "
            f"relevant files are already in context; use 'str_replace' to "
            f"edit a file or 'create' to write a new one.",
            disabled=True,
        )

    tool_name, required = mapping
    normalized: dict[str, str] = {}
    for key in required:
        value = payload.get(key)
        if not isinstance(value, str):
            kind = "missing" if value is None else f"not a string ({type(value).__name__})"
            raise NormalizationError(f"{NATIVE_EDITOR_NAME} '{command}': field '{key}' is {kind}")
        normalized[key] = value
    if not normalized["path"]:
        raise NormalizationError(f"{NATIVE_EDITOR_NAME} '{command}': field 'path' is empty")
    return ToolCall(id=block.id, name=tool_name, input=normalized)


def normalize_tool_use(block: ToolUseBlock, *, emulate: bool) -> ToolCall:
    """Convert one backend tool-use block into a canonical ToolCall.

    Args:
        block: The tool-use block as reported by the backend.
        emulate: Whether native editor emulation is active for this call.

    Returns:
        The canonical ToolCall.

    Raises:
        NormalizationError: If the block is malformed, or is an emulated
            editor command that is disabled (``disabled=True``).
    """
    if is_emulated(block, emulate=emulate):
        return _normalize_editor_command(block)
    if not isinstance(block.name, str) or not block.name:
        raise NormalizationError("tool use without a name")
    return ToolCall(id=block.id or None, name=block.name, input=dict(block.input or {}))


def tool_error_result(block: ToolUseBlock, error: NormalizationError) -> ToolResultBlock:
    """Synthesize the error tool-result that answers ``block``."""
    prefix = "Disabled" if error.disabled else "Error"
    return ToolResultBlock(
        tool_use_id=block.id,
        name=block.name,
        content=f"{prefix}: {error.message}",
        is_error=True,
    )
