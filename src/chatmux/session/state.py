"""Session state: turn history plus the sticky pinned settings."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence, Union

from pydantic import BaseModel

from chatmux.backends.profiles import BackendProfile
from chatmux.models.content import ContentBlock, ToolResultBlock, Turn, validate_block

logger = logging.getLogger(__name__)

AssistantContent = Union[str, Sequence[Union[BaseModel, dict]]]


class SessionState:
    """Owns the turn sequence and the sticky pinned settings of a session.

    The pinned system instruction lives in its own field, never in the
    turn list. Both it and the cacheability flag persist across calls
    until replaced (last write wins).

    Mutations are visible to every later call on the same session. There
    is no locking: one ``ask`` call in flight per session at a time.
    """

    def __init__(self, profile: BackendProfile, *, system: str | None = None, cacheable: bool = False) -> None:
        self.profile = profile
        self._turns: list[Turn] = []
        self._system = system
        self._cacheable = cacheable

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def append_user(self, text: str) -> Turn:
        if text is None:
            raise ValueError("User turn content must not be None")
        turn = Turn(role="user", content=text)
        self._turns.append(turn)
        return turn

    def append_assistant(self, content: AssistantContent) -> Turn:
        """Append an assistant turn of plain text or content blocks.

        Blocks may be model instances or raw dicts (validated against the
        ContentBlock union).
        """
        if content is None:
            raise ValueError("Assistant turn content must not be None")
        if isinstance(content, str):
            turn = Turn(role="assistant", content=content)
        else:
            turn = Turn(role="assistant", content=_as_blocks(content))
        self._turns.append(turn)
        return turn

    def append_tool_results(self, results: Sequence[ToolResultBlock | dict]) -> Turn:
        """Append a user turn answering earlier tool-use blocks."""
        if results is None:
            raise ValueError("Tool results must not be None")
        turn = Turn(role="user", content=_as_blocks(results))
        self._turns.append(turn)
        return turn

    def extend(self, turns: Iterable[Turn]) -> None:
        """Splice already-built turns (e.g. from a tool round-trip)."""
        self._turns.extend(turns)

    def history(self) -> tuple[Turn, ...]:
        """Read-only snapshot of the turn sequence, oldest first."""
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    # ------------------------------------------------------------------
    # Pinned settings
    # ------------------------------------------------------------------

    @property
    def system(self) -> str | None:
        return self._system

    def set_system(self, text: str) -> None:
        if text is None:
            raise ValueError("System instruction must not be None")
        if self._system is not None and text != self._system:
            logger.debug("Replacing pinned system instruction")
        self._system = text

    @property
    def cacheable(self) -> bool:
        return self._cacheable

    def set_cacheable(self, cacheable: bool) -> None:
        self._cacheable = bool(cacheable)


def _as_blocks(items: Sequence[BaseModel | dict]) -> tuple[ContentBlock, ...]:
    return tuple(validate_block(item) if isinstance(item, dict) else item for item in items)
