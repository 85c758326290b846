"""Backend profiles and model-spec resolution."""

from chatmux.backends.profiles import (
    BackendFamily,
    BackendProfile,
    InstructionPlacement,
    ReasoningStyle,
)
from chatmux.backends.resolver import (
    MODEL_ALIASES,
    THINKING_BUDGETS,
    ModelSpec,
    ThinkingLevel,
    parse_model_spec,
    resolve_backend,
)

__all__ = [
    "BackendFamily",
    "BackendProfile",
    "InstructionPlacement",
    "ReasoningStyle",
    "MODEL_ALIASES",
    "THINKING_BUDGETS",
    "ModelSpec",
    "ThinkingLevel",
    "parse_model_spec",
    "resolve_backend",
]
