"""Token counting with tiktoken.

Counts are estimates for non-OpenAI backends: every vendor tokenizes
differently, but o200k_base is close enough to size a prompt.
"""

from __future__ import annotations

import functools
from typing import Sequence

from chatmux.models.content import Turn

FALLBACK_ENCODING = "o200k_base"


class TiktokenCounter:
    """Token counter using tiktoken (OpenAI's tokenizer).

    Lazily imports tiktoken and caches the Encoding instance.
    Falls back to o200k_base encoding if the model is unknown to tiktoken.
    """

    def __init__(self, model: str = "gpt-4o", encoding_name: str | None = None) -> None:
        import tiktoken

        if encoding_name is not None:
            self._enc = tiktoken.get_encoding(encoding_name)
        else:
            try:
                self._enc = tiktoken.encoding_for_model(model)
            except KeyError:
                self._enc = tiktoken.get_encoding(FALLBACK_ENCODING)

    @property
    def encoding_name(self) -> str:
        return self._enc.name

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        return len(self._enc.encode(text))

    def count_turns(self, turns: Sequence[Turn], system: str | None = None) -> int:
        """Count a transcript with per-message overhead.

        3 tokens per turn, 3 for the pinned instruction if any, and 3 for
        the response primer. Only visible text is counted.
        """
        if not turns and not system:
            return 0
        total = 3
        if system:
            total += 3 + self.count_text(system)
        for turn in turns:
            total += 3 + self.count_text(turn.text)
        return total


@functools.lru_cache(maxsize=8)
def _counter(model: str) -> TiktokenCounter:
    return TiktokenCounter(model)


def count_tokens(text: str, model: str = "gpt-4o") -> int:
    """Estimate the token count of ``text`` for ``model``."""
    return _counter(model).count_text(text)


def count_turns(turns: Sequence[Turn], system: str | None = None, model: str = "gpt-4o") -> int:
    """Estimate the prompt size of a transcript for ``model``."""
    return _counter(model).count_turns(turns, system)
