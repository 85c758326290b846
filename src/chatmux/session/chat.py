"""Caller-facing chat session.

ChatSession wires the pieces together for one bound backend: it merges
config layers, builds the backend request, sends it through the
transport, normalizes the frames, renders and assembles the response,
and records the turns.

Usage::

    from chatmux import open_session

    with open_session("ct") as session:
        session.set_system("You are terse.")
        print(session.ask("Hello"))
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from rich.console import Console

from chatmux.backends.profiles import BackendProfile
from chatmux.backends.resolver import resolve_backend
from chatmux.loop import RoundtripResult, SendFn, consume, run_roundtrip, warn_truncated
from chatmux.models.config import ChatConfig, EffectiveConfig, resolve_config
from chatmux.models.content import TextBlock, Turn
from chatmux.models.tools import ToolDefinition
from chatmux.render import NullRenderer, Renderer, StreamRenderer
from chatmux.request import build_request
from chatmux.session.state import SessionState
from chatmux.stream import message_to_frames, normalize_frames
from chatmux.tools import uses_native_editor
from chatmux.transport.base import Transport
from chatmux.transport.vendors import transport_for

logger = logging.getLogger(__name__)

# Per-call options that update sticky session state instead of config.
_STICKY_SYSTEM = "system"
_STICKY_CACHEABLE = ("system_cacheable", "cacheable")


class ChatSession:
    """A conversation with one backend.

    Args:
        profile: The bound backend profile.
        transport: Carries requests to the backend.
        renderer: Event sink. Defaults to NullRenderer.
        vendor_config: Session-level config layer (ChatConfig or loose
            dict), between the vendor defaults and per-call options.
        system: Initial pinned system instruction.
        cacheable: Initial cacheability of the pinned instruction.
    """

    def __init__(
        self,
        profile: BackendProfile,
        transport: Transport,
        *,
        renderer: Renderer | None = None,
        vendor_config: ChatConfig | Mapping[str, Any] | None = None,
        system: str | None = None,
        cacheable: bool = False,
    ) -> None:
        self._state = SessionState(profile, system=system, cacheable=cacheable)
        self._transport = transport
        self._renderer = renderer or NullRenderer()
        if vendor_config is None or isinstance(vendor_config, ChatConfig):
            self._session_config = vendor_config
        else:
            self._session_config = ChatConfig.from_dict(vendor_config)

    @property
    def profile(self) -> BackendProfile:
        return self._state.profile

    @property
    def label(self) -> str:
        return f"{self.profile.vendor}:{self.profile.model}"

    # ------------------------------------------------------------------
    # State passthroughs
    # ------------------------------------------------------------------

    def history(self) -> tuple[Turn, ...]:
        return self._state.history()

    def set_system(self, text: str) -> None:
        self._state.set_system(text)

    def set_cacheable(self, cacheable: bool) -> None:
        self._state.set_cacheable(cacheable)

    @property
    def system(self) -> str | None:
        return self._state.system

    @property
    def cacheable(self) -> bool:
        return self._state.cacheable

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _take_sticky(self, options: dict[str, Any]) -> dict[str, Any]:
        """Move sticky per-call options into session state."""
        options = dict(options)
        system = options.pop(_STICKY_SYSTEM, None)
        if system is not None:
            self._state.set_system(system)
        for key in _STICKY_CACHEABLE:
            cacheable = options.pop(key, None)
            if cacheable is not None:
                self._state.set_cacheable(cacheable)
        return options

    def _resolve(self, options: Mapping[str, Any], *, tool_mode: bool) -> EffectiveConfig:
        return resolve_config(
            self.profile.defaults(tool_mode=tool_mode),
            self._session_config,
            ChatConfig.from_dict(options),
            system=self._state.system,
            cacheable=self._state.cacheable,
            fast=self.profile.fast,
        )

    def _sender(
        self,
        config: EffectiveConfig,
        tools: Sequence[ToolDefinition] | None = None,
        *,
        emulate: bool = False,
    ) -> SendFn:
        profile = self.profile

        def send(turns: Sequence[Turn]):
            request = build_request(profile, config, turns, tools, emulate=emulate)
            if request.stream:
                frames = self._transport.stream(request)
            else:
                frames = message_to_frames(profile.family, self._transport.complete(request))
            return normalize_frames(profile.family, frames)

        return send

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ask(self, message: str, **options: Any) -> str:
        """Send a plain message and return the visible answer text.

        Args:
            message: The user's message.
            **options: Per-call options (``temperature``, ``max_tokens``,
                ``stream``, ``reasoning``/``thinking``, ``system``,
                ``system_cacheable``, or any backend payload key).

        Raises:
            TransportError: On network, auth, rate-limit or backend failure.
        """
        if message is None:
            raise ValueError("Message must not be None")
        options = self._take_sticky(options)
        config = self._resolve(options, tool_mode=False)
        turns = self._state.history() + (Turn(role="user", content=message),)

        response = consume(self._sender(config)(turns), self._renderer)
        if response.truncated:
            warn_truncated(self.label)

        self._state.append_user(message)
        self._state.append_assistant(response.text)
        return response.text

    def ask_tools(
        self,
        message: str,
        tools: Sequence[ToolDefinition | Mapping[str, Any]],
        **options: Any,
    ) -> RoundtripResult:
        """Send a message with tools and run the tool round-trip loop.

        Tool calls are returned, never executed. With no tools this falls
        back to a plain ``ask``.

        Raises:
            TransportError: On network, auth, rate-limit or backend failure.
        """
        if message is None:
            raise ValueError("Message must not be None")
        definitions = [
            t if isinstance(t, ToolDefinition) else ToolDefinition.from_dict(t)
            for t in (tools or ())
        ]
        if not definitions:
            logger.warning("Tool mode requested with no tools; falling back to a plain call")
            return RoundtripResult(text=self.ask(message, **options), rounds=1)

        options = self._take_sticky(options)
        config = self._resolve(options, tool_mode=True)
        emulate = uses_native_editor(definitions) and self.profile.supports_native_editor
        if emulate:
            logger.debug("Emulating generic editor tools with %s's bundled editor", self.label)
        turns = self._state.history() + (Turn(role="user", content=message),)

        result = run_roundtrip(
            self._sender(config, definitions, emulate=emulate),
            turns,
            emulate=emulate,
            renderer=self._renderer,
            model=self.label,
        )

        self._state.append_user(message)
        self._state.extend(result.turns)
        self._state.append_assistant(
            "".join(b.text for b in result.final_blocks if isinstance(b, TextBlock))
        )
        return result

    def close(self) -> None:
        close = getattr(self._transport, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> ChatSession:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def open_session(
    spec: str,
    *,
    api_key: str | None = None,
    transport: Transport | None = None,
    console: Console | None = None,
    vendor_config: ChatConfig | Mapping[str, Any] | None = None,
    render: bool = True,
    system: str | None = None,
) -> ChatSession:
    """Open a session on the backend named by a model spec.

    Args:
        spec: Alias (``"c"``), bare model id, or
            ``vendor:model[:thinking][:fast]``.
        api_key: API key; otherwise read from the environment.
        transport: Custom transport (tests, proxies). Built from the
            resolved profile when omitted.
        console: rich Console to render to. Defaults to stdout.
        vendor_config: Session-level config layer.
        render: Render responses as they arrive.
        system: Initial pinned system instruction.

    Raises:
        ModelSpecError: If the spec cannot be resolved.
        TransportConfigError: If no API key is available.
    """
    profile = resolve_backend(spec)
    if transport is None:
        transport = transport_for(profile, api_key)
    renderer: Renderer = StreamRenderer(console) if render else NullRenderer()
    return ChatSession(
        profile,
        transport,
        renderer=renderer,
        vendor_config=vendor_config,
        system=system,
    )
