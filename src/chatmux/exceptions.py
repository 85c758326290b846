"""Chatmux exception hierarchy.

All chatmux-specific exceptions inherit from ChatmuxError. Only transport
errors (see :mod:`chatmux.transport.errors`) escape an ``ask`` call; the
rest are recovered inside the session and degrade to a partial result.
"""


class ChatmuxError(Exception):
    """Base exception for all chatmux errors."""


class ModelSpecError(ChatmuxError):
    """Raised when a model spec cannot be resolved to a backend."""

    def __init__(self, spec: str, reason: str) -> None:
        self.spec = spec
        self.reason = reason
        super().__init__(f"Invalid model spec '{spec}': {reason}")


class NormalizationError(ChatmuxError):
    """Raised when a backend tool-use payload cannot become a ToolCall.

    Attributes:
        disabled: True when the payload was well-formed but asks for a
            command that is turned off (e.g. viewing a file), False when
            the payload itself is malformed.
    """

    def __init__(self, message: str, *, disabled: bool = False) -> None:
        self.message = message
        self.disabled = disabled
        super().__init__(message)


class TruncationWarning(UserWarning):
    """The backend stopped generating because it hit its output-token limit."""
