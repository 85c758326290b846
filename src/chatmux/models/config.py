"""Configuration models for chatmux.

ChatConfig is the layered, all-optional configuration used for vendor
defaults, session-level settings and per-call overrides. ReasoningConfig is
its nested reasoning/thinking section. EffectiveConfig is the fully resolved
per-call result of merging the layers; it is never stored.

Precedence, field by field: per-call > session > vendor defaults. None
means "not set / inherit from the lower layer". Nested reasoning settings
and extra payload keys merge key-by-key, so overriding one knob keeps its
siblings.
"""

from __future__ import annotations

import types
from dataclasses import dataclass, field, fields as dc_fields
from typing import Any, Mapping

_ALIASES: dict[str, str] = {
    "max_completion_tokens": "max_tokens",
    "max_output_tokens": "max_tokens",
}

_IGNORED: frozenset[str] = frozenset({
    "messages", "tools", "tool_choice", "system", "system_cacheable",
    "vendor_config",
})


@dataclass(frozen=True)
class ReasoningConfig:
    """Reasoning/thinking controls.

    Attributes:
        enabled: Explicit on/off switch. None inherits; False disables
            reasoning even when a lower layer configured a budget.
        budget_tokens: Requested reasoning-token budget (budget-style
            backends: Anthropic, Gemini).
        effort: "low" | "medium" | "high" (effort-style backends: OpenAI
            Responses, and Anthropic ``output_config``).
        summary: Reasoning summary mode for the Responses API.
    """

    enabled: bool | None = None
    budget_tokens: int | None = None
    effort: str | None = None
    summary: str | None = None

    def merge(self, other: ReasoningConfig | None) -> ReasoningConfig:
        """Return a copy with every non-None field of ``other`` applied."""
        if other is None:
            return self
        values = {
            f.name: getattr(other, f.name)
            if getattr(other, f.name) is not None
            else getattr(self, f.name)
            for f in dc_fields(self)
        }
        return ReasoningConfig(**values)

    @property
    def active(self) -> bool:
        """Whether this config asks for reasoning at all."""
        if self.enabled is False:
            return False
        return bool(self.enabled or self.budget_tokens or self.effort)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any] | bool | str | None) -> ReasoningConfig | None:
        """Build from a loose dict.

        Accepts Anthropic's wire shape (``{"type": "enabled",
        "budget_tokens": N}``) as well as this class's own field names.
        A bare bool toggles reasoning; a bare string is an effort level.
        """
        if d is None:
            return None
        if isinstance(d, bool):
            return cls(enabled=d)
        if isinstance(d, str):
            return cls(enabled=True, effort=d)
        d = dict(d)
        enabled = d.get("enabled")
        kind = d.get("type")
        if kind == "enabled":
            enabled = True
        elif kind == "disabled":
            enabled = False
        return cls(
            enabled=enabled,
            budget_tokens=d.get("budget_tokens", d.get("thinking_budget")),
            effort=d.get("effort"),
            summary=d.get("summary"),
        )


@dataclass(frozen=True)
class ChatConfig:
    """One layer of chat configuration. All fields optional.

    Example::

        from chatmux import ChatConfig, ReasoningConfig
        layer = ChatConfig(temperature=0.2,
                           reasoning=ReasoningConfig(budget_tokens=4096))
    """

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool | None = None
    reasoning: ReasoningConfig | None = None
    extra: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.extra is not None:
            object.__setattr__(self, "extra", types.MappingProxyType(dict(self.extra)))

    @classmethod
    def from_dict(cls, d: Mapping[str, Any] | None) -> ChatConfig | None:
        """Create a ChatConfig from loose keyword options.

        Applies aliases (``max_completion_tokens`` -> ``max_tokens``),
        folds ``reasoning_effort``/``thinking``/``thinking_budget`` into the
        nested reasoning section, drops keys handled elsewhere (``system``,
        ``tools``, ...) and routes everything else to ``extra``.

        Returns None if d is None.
        """
        if d is None:
            return None
        d = dict(d)
        for alias, canonical in _ALIASES.items():
            if alias in d:
                value = d.pop(alias)
                d.setdefault(canonical, value)
        for key in _IGNORED:
            d.pop(key, None)

        reasoning = d.pop("reasoning", None)
        if reasoning is not None and not isinstance(reasoning, ReasoningConfig):
            reasoning = ReasoningConfig.from_dict(reasoning)
        thinking = d.pop("thinking", None)
        if thinking is not None:
            parsed = (
                thinking if isinstance(thinking, ReasoningConfig)
                else ReasoningConfig.from_dict(thinking)
            )
            reasoning = (reasoning or ReasoningConfig()).merge(parsed)
        effort = d.pop("reasoning_effort", None)
        budget = d.pop("thinking_budget", None)
        if effort is not None or budget is not None:
            reasoning = (reasoning or ReasoningConfig()).merge(
                ReasoningConfig(effort=effort, budget_tokens=budget)
            )

        known = {f.name for f in dc_fields(cls)} - {"extra", "reasoning"}
        known_kwargs: dict = {}
        extra_kwargs: dict = {}
        for k, v in d.items():
            if k in known:
                known_kwargs[k] = v
            else:
                extra_kwargs[k] = v
        return cls(
            **known_kwargs,
            reasoning=reasoning,
            extra=extra_kwargs if extra_kwargs else None,
        )


def merge_configs(*layers: ChatConfig | None) -> ChatConfig:
    """Merge config layers; later layers take precedence field by field.

    ``reasoning`` and ``extra`` are merged key-by-key instead of being
    replaced wholesale.
    """
    model = temperature = max_tokens = stream = None
    reasoning: ReasoningConfig | None = None
    extra: dict = {}
    for layer in layers:
        if layer is None:
            continue
        if layer.model is not None:
            model = layer.model
        if layer.temperature is not None:
            temperature = layer.temperature
        if layer.max_tokens is not None:
            max_tokens = layer.max_tokens
        if layer.stream is not None:
            stream = layer.stream
        if layer.reasoning is not None:
            reasoning = (reasoning or ReasoningConfig()).merge(layer.reasoning)
        if layer.extra:
            extra.update(layer.extra)
    return ChatConfig(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        stream=stream,
        reasoning=reasoning,
        extra=extra or None,
    )


@dataclass(frozen=True)
class EffectiveConfig:
    """Fully resolved configuration for one call.

    ``reasoning`` is None when reasoning is not requested. ``temperature``
    is None when no layer set one; the request builder may still drop an
    explicit temperature when reasoning is active.
    """

    model: str
    max_tokens: int
    stream: bool = True
    temperature: float | None = None
    reasoning: ReasoningConfig | None = None
    system: str | None = None
    cacheable: bool = False
    fast: bool = False
    extra: Mapping[str, Any] = field(default_factory=lambda: types.MappingProxyType({}))


def resolve_config(
    vendor_defaults: ChatConfig | None,
    session: ChatConfig | None,
    per_call: ChatConfig | None,
    *,
    system: str | None = None,
    cacheable: bool = False,
    fast: bool = False,
) -> EffectiveConfig:
    """Resolve the effective configuration for one call.

    Args:
        vendor_defaults: Backend profile defaults (lowest precedence).
        session: Sticky session-level config.
        per_call: Options passed to this call (highest precedence).
        system: The session's pinned instruction (already updated with any
            per-call value).
        cacheable: The session's sticky cacheability flag.
        fast: Fast-mode flag from the model spec.

    Raises:
        ValueError: If no layer provides a model or a token budget.
    """
    merged = merge_configs(vendor_defaults, session, per_call)
    if not merged.model:
        raise ValueError("No model configured in any config layer")
    if merged.max_tokens is None:
        raise ValueError("No max_tokens configured in any config layer")
    reasoning = merged.reasoning if merged.reasoning and merged.reasoning.active else None
    return EffectiveConfig(
        model=merged.model,
        max_tokens=merged.max_tokens,
        stream=True if merged.stream is None else merged.stream,
        temperature=merged.temperature,
        reasoning=reasoning,
        system=system,
        cacheable=cacheable,
        fast=fast,
        extra=types.MappingProxyType(dict(merged.extra or {})),
    )
