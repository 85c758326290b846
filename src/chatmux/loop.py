"""Tool round-trip loop.

One tool-mode ``ask`` call runs up to :data:`MAX_ROUNDS` request/response
rounds. Each round's canonical events are consumed once, feeding the
renderer and a :class:`ResponseAssembler` in lockstep. After the round the
tool-use blocks are classified:

1. Any block that normalizes into a ToolCall ends the loop successfully;
   the calls are returned to the caller, who executes them.
2. If the only tool-use blocks were emulated editor commands that failed
   normalization, the raw response and synthesized error results are
   appended to the transcript and another round starts.
3. Otherwise (no tool use at all) the loop ends with the text so far.

When rule 2 applies on the last allowed round the loop ends with
``RoundOutcome.BUDGET_EXHAUSTED`` instead of raising.
"""

from __future__ import annotations

import enum
import logging
import warnings
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Sequence

from chatmux.exceptions import NormalizationError, TruncationWarning
from chatmux.models.content import (
    ContentBlock,
    ReasoningBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
)
from chatmux.models.events import (
    CanonicalEvent,
    ReasoningDelta,
    Stop,
    StopReason,
    TextDelta,
    ToolCallDone,
)
from chatmux.models.tools import ToolCall
from chatmux.render import NullRenderer, Renderer
from chatmux.tools import is_emulated, normalize_tool_use, tool_error_result

logger = logging.getLogger(__name__)

MAX_ROUNDS = 4

SendFn = Callable[[Sequence[Turn]], Iterator[CanonicalEvent]]


class RoundOutcome(str, enum.Enum):
    """How a round-trip ended."""

    SUCCESS = "success"
    BUDGET_EXHAUSTED = "budget_exhausted"


class RoundState(str, enum.Enum):
    """Loop states, exposed for logging."""

    AWAITING_BACKEND = "awaiting_backend"
    HAVE_RESPONSE = "have_response"
    CONTINUING = "continuing"


# ---------------------------------------------------------------------------
# Response assembly
# ---------------------------------------------------------------------------


class ResponseAssembler:
    """Builds the ordered content blocks of one response from its events.

    Consecutive reasoning or text deltas merge into one block; a reasoning
    signature attaches to the reasoning block it arrived in. Tool-use
    blocks are taken from ToolCallDone events.
    """

    def __init__(self) -> None:
        self._blocks: list[ContentBlock] = []
        self._kind: str | None = None
        self._parts: list[str] = []
        self._signature: str | None = None
        self.stop_reason: StopReason | None = None

    def _flush(self) -> None:
        if self._kind == "reasoning":
            if self._parts or self._signature:
                self._blocks.append(ReasoningBlock(text="".join(self._parts), signature=self._signature))
        elif self._kind == "text" and self._parts:
            self._blocks.append(TextBlock(text="".join(self._parts)))
        self._kind = None
        self._parts = []
        self._signature = None

    def _accumulate(self, kind: str, text: str) -> None:
        if self._kind != kind:
            self._flush()
            self._kind = kind
        if text:
            self._parts.append(text)

    def feed(self, event: CanonicalEvent) -> None:
        if isinstance(event, ReasoningDelta):
            self._accumulate("reasoning", event.text)
            if event.signature:
                self._signature = event.signature
        elif isinstance(event, TextDelta):
            self._accumulate("text", event.text)
        elif isinstance(event, ToolCallDone):
            self._flush()
            self._blocks.append(ToolUseBlock(id=event.id, name=event.name, input=event.input))
        elif isinstance(event, Stop):
            self._flush()
            self.stop_reason = event.reason

    @property
    def blocks(self) -> tuple[ContentBlock, ...]:
        self._flush()
        return tuple(self._blocks)

    @property
    def text(self) -> str:
        """Visible answer text; reasoning is excluded."""
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolUseBlock)]

    @property
    def truncated(self) -> bool:
        return self.stop_reason == StopReason.MAX_TOKENS


def consume(events: Iterable[CanonicalEvent], renderer: Renderer | None = None) -> ResponseAssembler:
    """Drain one response, rendering and assembling each event in turn."""
    renderer = renderer or NullRenderer()
    assembler = ResponseAssembler()
    for event in events:
        renderer.render(event)
        assembler.feed(event)
    return assembler


def warn_truncated(model: str = "") -> None:
    """Report backend-imposed truncation on the warnings channel."""
    message = "Response truncated: the backend hit its output-token limit"
    if model:
        message = f"{message} ({model})"
    logger.warning(message)
    warnings.warn(message, TruncationWarning, stacklevel=3)


# ---------------------------------------------------------------------------
# Round-trip
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoundtripResult:
    """Outcome of a tool-mode call.

    Attributes:
        text: Visible text accumulated over all rounds.
        tool_calls: Calls for the caller to execute (possibly empty).
        rounds: Backend requests issued.
        outcome: SUCCESS or BUDGET_EXHAUSTED.
        stop_reason: Stop reason of the final response.
        truncated: Whether any round stopped on the output-token limit.
        turns: Assistant/user turns spliced into the transcript by
            intermediate rounds, oldest first.
        final_blocks: Content blocks of the final response.
    """

    text: str
    tool_calls: tuple[ToolCall, ...] = ()
    rounds: int = 0
    outcome: RoundOutcome = RoundOutcome.SUCCESS
    stop_reason: StopReason | None = None
    truncated: bool = False
    turns: tuple[Turn, ...] = field(default=(), repr=False)
    final_blocks: tuple[ContentBlock, ...] = field(default=(), repr=False)

    @property
    def inconclusive(self) -> bool:
        """Budget ran out with no text and no tool calls."""
        return (
            self.outcome == RoundOutcome.BUDGET_EXHAUSTED
            and not self.text
            and not self.tool_calls
        )


def _classify(
    blocks: Sequence[ToolUseBlock], *, emulate: bool
) -> tuple[list[ToolCall], list[ToolResultBlock], list[ToolResultBlock]]:
    """Split tool-use blocks into reportable calls, emulation failures and
    other failures (each failure already turned into its error result)."""
    calls: list[ToolCall] = []
    emulation_failures: list[ToolResultBlock] = []
    other_failures: list[ToolResultBlock] = []
    for block in blocks:
        try:
            calls.append(normalize_tool_use(block, emulate=emulate))
        except NormalizationError as exc:
            result = tool_error_result(block, exc)
            if is_emulated(block, emulate=emulate):
                logger.debug("Emulated editor call %s rejected: %s", block.id, exc.message)
                emulation_failures.append(result)
            else:
                logger.warning("Dropping unusable tool use %r: %s", block.name, exc.message)
                other_failures.append(result)
    return calls, emulation_failures, other_failures


def _join(texts: Sequence[str]) -> str:
    return "\n".join(t for t in texts if t)


def run_roundtrip(
    send: SendFn,
    turns: Sequence[Turn],
    *,
    emulate: bool,
    renderer: Renderer | None = None,
    max_rounds: int = MAX_ROUNDS,
    model: str = "",
) -> RoundtripResult:
    """Run the tool round-trip loop.

    Args:
        send: Issues one backend request for the given transcript and
            returns its canonical events. Transport errors propagate.
        turns: Transcript to start from, ending with the user's turn.
        emulate: Whether native editor emulation is active.
        renderer: Event sink; defaults to NullRenderer.
        max_rounds: Maximum backend requests for this call.
        model: Model label used in log and warning messages.

    Returns:
        The RoundtripResult. The transcript passed in is not modified;
        turns spliced in by intermediate rounds are in ``result.turns``.
    """
    transcript = list(turns)
    spliced: list[Turn] = []
    texts: list[str] = []
    truncated = False
    rounds = 0

    while True:
        state = RoundState.AWAITING_BACKEND
        rounds += 1
        logger.debug("Round %d/%d: %s (%d turns)", rounds, max_rounds, state.value, len(transcript))
        response = consume(send(tuple(transcript)), renderer)

        state = RoundState.HAVE_RESPONSE
        texts.append(response.text)
        if response.truncated:
            truncated = True
            warn_truncated(model)

        calls, emulation_failures, other_failures = _classify(response.tool_uses, emulate=emulate)

        if calls:
            logger.debug("Round %d: %s with %d tool call(s)", rounds, state.value, len(calls))
            return RoundtripResult(
                text=_join(texts),
                tool_calls=tuple(calls),
                rounds=rounds,
                outcome=RoundOutcome.SUCCESS,
                stop_reason=response.stop_reason,
                truncated=truncated,
                turns=tuple(spliced),
                final_blocks=response.blocks,
            )

        if not emulation_failures:
            return RoundtripResult(
                text=_join(texts),
                rounds=rounds,
                outcome=RoundOutcome.SUCCESS,
                stop_reason=response.stop_reason,
                truncated=truncated,
                turns=tuple(spliced),
                final_blocks=response.blocks,
            )

        if rounds >= max_rounds:
            logger.warning(
                "Tool round-trip gave up after %d rounds without a usable tool call", rounds
            )
            return RoundtripResult(
                text=_join(texts),
                rounds=rounds,
                outcome=RoundOutcome.BUDGET_EXHAUSTED,
                stop_reason=response.stop_reason,
                truncated=truncated,
                turns=tuple(spliced),
                final_blocks=response.blocks,
            )

        state = RoundState.CONTINUING
        logger.debug(
            "Round %d: %s with %d synthesized tool result(s)",
            rounds, state.value, len(emulation_failures) + len(other_failures),
        )
        # Every tool use in the replayed response needs an answering result.
        followup = (
            Turn(role="assistant", content=response.blocks),
            Turn(role="user", content=tuple(emulation_failures + other_failures)),
        )
        transcript.extend(followup)
        spliced.extend(followup)
