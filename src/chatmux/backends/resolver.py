"""Model spec parsing and backend resolution.

A model spec is either a short alias (``"c"``, ``"ct"``, ``"i"``), a bare
model id (``"claude-sonnet-4-5"``), or ``vendor:model[:thinking][:fast]``
(``"anthropic:claude-sonnet-4-5:high"``). :func:`resolve_backend` turns a
spec into a BackendProfile once, at session construction.
"""

from __future__ import annotations

import enum
import logging
import types
from dataclasses import dataclass, replace

from chatmux.backends.profiles import (
    BackendFamily,
    BackendProfile,
    InstructionPlacement,
    ReasoningStyle,
)
from chatmux.exceptions import ModelSpecError
from chatmux.models.config import ReasoningConfig

logger = logging.getLogger(__name__)

ANTHROPIC_FAST_BETA = "fast-mode-2026-02-01"
ANTHROPIC_VERSION = "2023-06-01"


class ThinkingLevel(str, enum.Enum):
    """Coarse reasoning level selectable from a model spec."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Requested reasoning budget per level for budget-style backends.
THINKING_BUDGETS: dict[ThinkingLevel, int] = {
    ThinkingLevel.LOW: 4096,
    ThinkingLevel.MEDIUM: 16000,
    ThinkingLevel.HIGH: 32000,
}

MODEL_ALIASES: dict[str, str] = {
    "g": "openai:gpt-4.1-mini",
    "G": "openai:gpt-4.1",
    "o": "openai:o4-mini:medium",
    "O": "openai:o3:high",
    "5": "openai:gpt-5:medium",
    "c": "anthropic:claude-sonnet-4-5",
    "C": "anthropic:claude-opus-4-1",
    "ct": "anthropic:claude-sonnet-4-5:high",
    "Ct": "anthropic:claude-opus-4-1:high",
    "i": "google:gemini-2.5-flash",
    "I": "google:gemini-2.5-pro:medium",
    "x": "xai:grok-4",
    "xt": "xai:grok-3-mini:high",
    "d": "deepseek:deepseek-chat",
    "D": "deepseek:deepseek-reasoner",
    "k": "kimi:kimi-k2-0905-preview",
    "K": "kimi:kimi-k2-thinking",
    "l": "openrouter:meta-llama/llama-3.3-70b-instruct",
}

_VENDOR_PREFIXES: tuple[tuple[str, str], ...] = (
    ("claude", "anthropic"),
    ("gpt", "openai"),
    ("chatgpt", "openai"),
    ("o1", "openai"),
    ("o3", "openai"),
    ("o4", "openai"),
    ("gemini", "google"),
    ("grok", "xai"),
    ("deepseek", "deepseek"),
    ("kimi", "kimi"),
    ("meta-llama/", "openrouter"),
)

_OPENAI_COMPATIBLE: dict[str, tuple[str, tuple[str, ...]]] = {
    "openai": ("https://api.openai.com/v1", ("CHATMUX_OPENAI_API_KEY", "OPENAI_API_KEY")),
    "deepseek": ("https://api.deepseek.com/v1", ("CHATMUX_DEEPSEEK_API_KEY", "DEEPSEEK_API_KEY")),
    "openrouter": ("https://openrouter.ai/api/v1", ("CHATMUX_OPENROUTER_API_KEY", "OPENROUTER_API_KEY")),
    "kimi": ("https://api.moonshot.ai/v1", ("CHATMUX_KIMI_API_KEY", "MOONSHOT_API_KEY")),
    "xai": ("https://api.x.ai/v1", ("CHATMUX_XAI_API_KEY", "XAI_API_KEY")),
}


@dataclass(frozen=True)
class ModelSpec:
    """A parsed model spec."""

    vendor: str
    model: str
    thinking: ThinkingLevel = ThinkingLevel.NONE
    fast: bool = False

    @property
    def label(self) -> str:
        label = f"{self.vendor}:{self.model}:{self.thinking.value}"
        return label + ":fast" if self.fast else label


def _infer_vendor(model: str) -> str | None:
    for prefix, vendor in _VENDOR_PREFIXES:
        if model.startswith(prefix):
            return vendor
    return None


def parse_model_spec(spec: str) -> ModelSpec:
    """Parse an alias, bare model id, or ``vendor:model[:thinking][:fast]``.

    Raises:
        ModelSpecError: On an empty spec, an unknown vendor or an unknown
            thinking level.
    """
    if not spec:
        raise ModelSpecError(spec, "empty spec")
    expanded = MODEL_ALIASES.get(spec, spec)
    parts = expanded.split(":")

    if len(parts) == 1:
        vendor = _infer_vendor(parts[0])
        if vendor is None:
            raise ModelSpecError(spec, "cannot infer vendor from model id")
        return ModelSpec(vendor=vendor, model=parts[0])

    vendor, model, *rest = parts
    if vendor not in _OPENAI_COMPATIBLE and vendor not in ("anthropic", "google"):
        raise ModelSpecError(spec, f"unknown vendor '{vendor}'")
    if not model:
        raise ModelSpecError(spec, "missing model id")

    thinking = ThinkingLevel.NONE
    fast = False
    for token in rest:
        if token == "fast":
            fast = True
            continue
        try:
            thinking = ThinkingLevel(token)
        except ValueError:
            raise ModelSpecError(spec, f"unknown thinking level '{token}'") from None
    return ModelSpec(vendor=vendor, model=model, thinking=thinking, fast=fast)


def _reasoning_for(level: ThinkingLevel, style: ReasoningStyle) -> ReasoningConfig | None:
    if level == ThinkingLevel.NONE:
        return None
    if style == ReasoningStyle.BUDGET:
        return ReasoningConfig(enabled=True, budget_tokens=THINKING_BUDGETS[level])
    if style == ReasoningStyle.EFFORT:
        return ReasoningConfig(enabled=True, effort=level.value, summary="auto")
    return None


def _anthropic_profile(spec: ModelSpec) -> BackendProfile:
    headers = {"anthropic-version": ANTHROPIC_VERSION}
    if spec.fast:
        headers["anthropic-beta"] = ANTHROPIC_FAST_BETA
    return BackendProfile(
        vendor="anthropic",
        model=spec.model,
        family=BackendFamily.ANTHROPIC,
        base_url="https://api.anthropic.com/v1",
        api_key_env=("CHATMUX_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
        instruction_placement=InstructionPlacement.SYSTEM_FIELD,
        reasoning_style=ReasoningStyle.BUDGET,
        supports_native_editor=True,
        supports_caching=True,
        reasoning_floor=1024,
        reserved_answer_tokens=1024,
        default_max_tokens=32000,
        tool_max_tokens=8192,
        fast=spec.fast,
        headers=types.MappingProxyType(headers),
    )


def _gemini_profile(spec: ModelSpec) -> BackendProfile:
    return BackendProfile(
        vendor="google",
        model=spec.model,
        family=BackendFamily.GEMINI,
        base_url="https://generativelanguage.googleapis.com/v1beta",
        api_key_env=("CHATMUX_GOOGLE_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"),
        instruction_placement=InstructionPlacement.SYSTEM_INSTRUCTION,
        reasoning_style=ReasoningStyle.BUDGET,
        reasoning_floor=128,
        reserved_answer_tokens=1024,
        default_max_tokens=65536,
        tool_max_tokens=8192,
        default_temperature=0.0,
    )


def _openai_compatible_profile(spec: ModelSpec) -> BackendProfile:
    base_url, key_env = _OPENAI_COMPATIBLE[spec.vendor]
    model = spec.model
    is_reasoning_series = spec.vendor == "openai" and (
        model[:2] in ("o1", "o3", "o4") or model.startswith("gpt-5")
    )

    if is_reasoning_series:
        return BackendProfile(
            vendor=spec.vendor,
            model=model,
            family=BackendFamily.OPENAI_RESPONSES,
            base_url=base_url,
            api_key_env=key_env,
            instruction_placement=InstructionPlacement.INSTRUCTIONS_FIELD,
            reasoning_style=ReasoningStyle.EFFORT,
            default_max_tokens=80000,
            tool_max_tokens=16384,
        )

    headers: dict[str, str] = {}
    if spec.vendor == "openrouter":
        headers["HTTP-Referer"] = "https://github.com/chatmux/chatmux"

    temperature: float | None = 0.0
    max_tokens = 16384
    if spec.vendor == "kimi":
        thinking_model = model.endswith("thinking")
        temperature = 1.0 if thinking_model else 0.6
        max_tokens = 64000 if thinking_model else 32000

    return BackendProfile(
        vendor=spec.vendor,
        model=model,
        family=BackendFamily.OPENAI_CHAT,
        base_url=base_url,
        api_key_env=key_env,
        instruction_placement=InstructionPlacement.SYSTEM_MESSAGE,
        reasoning_style=ReasoningStyle.EFFORT if spec.vendor == "xai" else ReasoningStyle.NONE,
        default_max_tokens=max_tokens,
        tool_max_tokens=8192,
        default_temperature=temperature,
        headers=types.MappingProxyType(headers),
    )


def resolve_backend(spec: ModelSpec | str) -> BackendProfile:
    """Resolve a model spec to the profile of the backend that serves it.

    Raises:
        ModelSpecError: If the spec cannot be parsed.
    """
    if isinstance(spec, str):
        spec = parse_model_spec(spec)

    if spec.vendor == "anthropic":
        profile = _anthropic_profile(spec)
    elif spec.vendor == "google":
        profile = _gemini_profile(spec)
    else:
        profile = _openai_compatible_profile(spec)

    reasoning = _reasoning_for(spec.thinking, profile.reasoning_style)
    if spec.thinking != ThinkingLevel.NONE and reasoning is None:
        logger.debug(
            "Thinking level %s ignored: %s has no reasoning controls",
            spec.thinking.value, spec.label,
        )
    if spec.fast and profile.family != BackendFamily.ANTHROPIC:
        logger.debug("Fast mode ignored for %s", spec.label)
    logger.debug("Resolved %s to %s backend", spec.label, profile.family.value)
    return replace(profile, default_reasoning=reasoning)
