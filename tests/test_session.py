"""Tests for ChatSession and SessionState.

Sessions are driven against FakeTransport (see conftest), which replays
scripted backend messages and records every BackendRequest.
"""

from __future__ import annotations

import logging

import pytest
from rich.console import Console

from chatmux.loop import MAX_ROUNDS, RoundOutcome
from chatmux.models.content import TextBlock, ToolResultBlock, ToolUseBlock, Turn
from chatmux.models.tools import ToolCall
from chatmux.render import StreamRenderer
from chatmux.session import ChatSession, SessionState, open_session
from chatmux.tools import NATIVE_EDITOR_NAME, NATIVE_EDITOR_TYPE
from chatmux.transport.errors import TransportAuthError

_EDITOR_TOOLS = [
    {"name": "str_replace", "description": "Replace text", "input_schema": {"type": "object"}},
    {"name": "create_file", "description": "Create a file", "input_schema": {"type": "object"}},
]


def _message(*content, stop_reason: str = "end_turn") -> dict:
    """Build an Anthropic Messages API response."""
    return {
        "id": "msg_test",
        "type": "message",
        "role": "assistant",
        "content": list(content),
        "stop_reason": stop_reason,
    }


def _text(text: str) -> dict:
    return {"type": "text", "text": text}


def _editor(command: str, call_id: str = "toolu_1", **fields) -> dict:
    return {
        "type": "tool_use",
        "id": call_id,
        "name": NATIVE_EDITOR_NAME,
        "input": {"command": command, **fields},
    }


def _session(profile, transport, console=None, **kwargs) -> ChatSession:
    renderer = StreamRenderer(console) if console is not None else None
    return ChatSession(profile, transport, renderer=renderer, **kwargs)


# ---------------------------------------------------------------------------
# SessionState
# ---------------------------------------------------------------------------


class TestSessionState:
    def test_append_and_snapshot(self, anthropic_profile):
        state = SessionState(anthropic_profile)
        state.append_user("hi")
        state.append_assistant("hello")
        snapshot = state.history()
        state.append_user("again")
        assert len(snapshot) == 2
        assert len(state.history()) == 3
        assert snapshot[1] == Turn(role="assistant", content="hello")

    def test_assistant_blocks_from_dicts(self, anthropic_profile):
        state = SessionState(anthropic_profile)
        turn = state.append_assistant([{"type": "text", "text": "a"}, {"type": "tool_use", "id": "c", "name": "f"}])
        assert turn.content == (TextBlock(text="a"), ToolUseBlock(id="c", name="f"))

    def test_tool_results(self, anthropic_profile):
        state = SessionState(anthropic_profile)
        turn = state.append_tool_results([ToolResultBlock(tool_use_id="c", content="ok")])
        assert turn.role == "user"

    def test_none_rejected(self, anthropic_profile):
        state = SessionState(anthropic_profile)
        with pytest.raises(ValueError):
            state.append_user(None)
        with pytest.raises(ValueError):
            state.append_assistant(None)
        with pytest.raises(ValueError):
            state.set_system(None)

    def test_sticky_settings(self, anthropic_profile):
        state = SessionState(anthropic_profile)
        assert state.system is None
        state.set_system("one")
        state.set_system("two")
        state.set_cacheable(True)
        assert state.system == "two"
        assert state.cacheable is True
        assert state.history() == ()


# ---------------------------------------------------------------------------
# Plain ask
# ---------------------------------------------------------------------------


class TestAsk:
    def test_reasoning_then_text(self, anthropic_profile, fake_transport, console, output):
        transport = fake_transport(_message(
            {"type": "thinking", "thinking": "thinking...", "signature": "sig"},
            _text("Hi there"),
        ))
        session = _session(anthropic_profile, transport, console)

        answer = session.ask("Hello", stream=False)

        assert answer == "Hi there"
        assert output.getvalue() == "thinking...\nHi there\n"
        assert session.history() == (
            Turn(role="user", content="Hello"),
            Turn(role="assistant", content="Hi there"),
        )
        assert transport.requests[0].stream is False

    def test_streaming_path(self, anthropic_profile, fake_transport):
        transport = fake_transport(_message(_text("streamed")))
        session = _session(anthropic_profile, transport)
        assert session.ask("Hello") == "streamed"
        assert transport.requests[0].stream is True

    @pytest.mark.parametrize("n", [1, 3, 5])
    def test_history_is_two_turns_per_call(self, anthropic_profile, fake_transport, n):
        transport = fake_transport(*[_message(_text(f"reply {i}")) for i in range(n)])
        session = _session(anthropic_profile, transport)
        for i in range(n):
            session.ask(f"question {i}")
        assert len(session.history()) == 2 * n
        assert len(transport.requests[-1].payload["messages"]) == 2 * n - 1

    def test_system_is_sticky_and_pinned(self, anthropic_profile, fake_transport):
        transport = fake_transport(_message(_text("a")), _message(_text("b")), _message(_text("c")))
        session = _session(anthropic_profile, transport)

        session.ask("one", system="Be brief")
        session.ask("two")
        session.ask("three", system="Be verbose", system_cacheable=True)

        payloads = [r.payload for r in transport.requests]
        assert payloads[0]["system"] == "Be brief"
        assert payloads[1]["system"] == "Be brief"
        assert payloads[2]["system"][0]["text"] == "Be verbose"
        assert payloads[2]["system"][0]["cache_control"] == {"type": "ephemeral"}
        assert session.system == "Be verbose"
        assert all(t.role in ("user", "assistant") for t in session.history())
        assert session.history()[0] == Turn(role="user", content="one")

    def test_vendor_config_layer(self, anthropic_profile, fake_transport):
        transport = fake_transport(_message(_text("a")), _message(_text("b")))
        session = _session(anthropic_profile, transport, vendor_config={"temperature": 0.4, "top_k": 3})
        session.ask("one")
        session.ask("two", temperature=0.9)
        assert transport.requests[0].payload["temperature"] == 0.4
        assert transport.requests[0].payload["top_k"] == 3
        assert transport.requests[1].payload["temperature"] == 0.9

    def test_reasoning_option_suppresses_temperature(self, anthropic_profile, fake_transport):
        transport = fake_transport(_message(_text("a")))
        session = _session(anthropic_profile, transport, vendor_config={"temperature": 0.4})
        session.ask("one", reasoning={"budget_tokens": 2048})
        payload = transport.requests[0].payload
        assert payload["thinking"] == {"type": "enabled", "budget_tokens": 2048}
        assert "temperature" not in payload

    def test_truncation_warns(self, anthropic_profile, fake_transport):
        from chatmux.exceptions import TruncationWarning

        transport = fake_transport(_message(_text("cut of"), stop_reason="max_tokens"))
        session = _session(anthropic_profile, transport)
        with pytest.warns(TruncationWarning):
            assert session.ask("long please") == "cut of"
        assert len(session.history()) == 2

    def test_transport_error_propagates_without_recording(self, anthropic_profile):
        class FailingTransport:
            def complete(self, request):
                raise TransportAuthError("Authentication failed: HTTP 401")

            def stream(self, request):
                raise TransportAuthError("Authentication failed: HTTP 401")

            def close(self):
                pass

        session = _session(anthropic_profile, FailingTransport())
        with pytest.raises(TransportAuthError):
            session.ask("Hello")
        assert session.history() == ()


# ---------------------------------------------------------------------------
# Tool mode
# ---------------------------------------------------------------------------


class TestAskTools:
    def test_view_then_create(self, anthropic_profile, fake_transport):
        transport = fake_transport(
            _message(_text("Let me look."), _editor("view", path="a.py"), stop_reason="tool_use"),
            _message(_editor("create", "toolu_2", path="b.py", file_text="x = 1\n"), stop_reason="tool_use"),
        )
        session = _session(anthropic_profile, transport)

        result = session.ask_tools("Create b.py", _EDITOR_TOOLS)

        assert result.rounds == 2
        assert result.tool_calls == (
            ToolCall(name="create_file", input={"path": "b.py", "file_text": "x = 1\n"}, id="toolu_2"),
        )
        assert len(transport.requests) == 2
        first = transport.requests[0]
        assert first.stream is False
        assert first.payload["tools"] == [{"type": NATIVE_EDITOR_TYPE, "name": NATIVE_EDITOR_NAME}]

        # Round 2 carried the synthesized error result for the view call.
        second_messages = transport.requests[1].payload["messages"]
        assert second_messages[-1]["role"] == "user"
        assert second_messages[-1]["content"][0]["tool_use_id"] == "toolu_1"
        assert second_messages[-1]["content"][0]["is_error"] is True

        history = session.history()
        assert [t.role for t in history] == ["user", "assistant", "user", "assistant"]
        assert isinstance(history[2].content[0], ToolResultBlock)

    def test_generic_tool_stops_immediately(self, anthropic_profile, fake_transport):
        transport = fake_transport(_message(
            {"type": "tool_use", "id": "toolu_9", "name": "run_tests", "input": {"path": "tests/"}},
            stop_reason="tool_use",
        ))
        session = _session(anthropic_profile, transport)
        tools = [{"name": "run_tests", "description": "Run tests", "input_schema": {"type": "object"}}]

        result = session.ask_tools("Run the tests", tools)

        assert result.rounds == 1
        assert result.tool_calls == (ToolCall(name="run_tests", input={"path": "tests/"}, id="toolu_9"),)
        assert len(transport.requests) == 1
        assert transport.requests[0].payload["tools"][0]["name"] == "run_tests"

    def test_request_budget(self, anthropic_profile, fake_transport):
        transport = fake_transport(*[
            _message(_editor("view", f"toolu_{i}", path="a.py"), stop_reason="tool_use")
            for i in range(MAX_ROUNDS + 2)
        ])
        session = _session(anthropic_profile, transport)

        result = session.ask_tools("Edit a.py", _EDITOR_TOOLS)

        assert len(transport.requests) == MAX_ROUNDS
        assert result.outcome == RoundOutcome.BUDGET_EXHAUSTED
        assert result.inconclusive
        assert result.tool_calls == ()

    def test_no_emulation_without_native_editor(self, openai_chat_profile, fake_transport):
        transport = fake_transport({
            "choices": [{"message": {"role": "assistant", "content": "No changes needed."}, "finish_reason": "stop"}],
        })
        session = _session(openai_chat_profile, transport)
        result = session.ask_tools("Edit a.py", _EDITOR_TOOLS)
        names = [t["function"]["name"] for t in transport.requests[0].payload["tools"]]
        assert names == ["str_replace", "create_file"]
        assert result.text == "No changes needed."

    def test_zero_tools_falls_back_to_plain(self, anthropic_profile, fake_transport, caplog):
        transport = fake_transport(_message(_text("plain answer")))
        session = _session(anthropic_profile, transport)
        with caplog.at_level(logging.WARNING, logger="chatmux.session.chat"):
            result = session.ask_tools("Hello", [])
        assert result.text == "plain answer"
        assert result.tool_calls == ()
        assert "tools" not in transport.requests[0].payload
        assert transport.requests[0].stream is True
        assert "no tools" in caplog.text
        assert len(session.history()) == 2

    def test_tool_mode_stream_override(self, anthropic_profile, fake_transport):
        transport = fake_transport(_message(_text("ok")))
        session = _session(anthropic_profile, transport)
        session.ask_tools("Hi", _EDITOR_TOOLS, stream=True)
        assert transport.requests[0].stream is True


class TestFollowUpAfterTools:
    """A plain ask after tool mode must send history the backend accepts."""

    @staticmethod
    def _assert_plain_anthropic(payload):
        assert "tools" not in payload
        roles = [m["role"] for m in payload["messages"]]
        assert roles[0] == "user"
        assert all(a != b for a, b in zip(roles, roles[1:]))
        for message in payload["messages"]:
            assert message["content"]
            if isinstance(message["content"], list):
                assert {b["type"] for b in message["content"]} == {"text"}

    def test_after_editor_emulation(self, anthropic_profile, fake_transport):
        transport = fake_transport(
            _message(_text("Let me look."), _editor("view", path="a.py"), stop_reason="tool_use"),
            _message(_editor("create", "toolu_2", path="b.py", file_text="x = 1\n"), stop_reason="tool_use"),
            _message(_text("You're welcome.")),
        )
        session = _session(anthropic_profile, transport)
        session.ask_tools("Create b.py", _EDITOR_TOOLS)

        assert session.ask("Thanks", stream=False) == "You're welcome."

        payload = transport.requests[2].payload
        self._assert_plain_anthropic(payload)
        assert [m["role"] for m in payload["messages"]] == ["user", "assistant", "user"]
        assert payload["messages"][1]["content"][0] == {"type": "text", "text": "Let me look."}
        assert payload["messages"][-1]["content"][-1] == {"type": "text", "text": "Thanks"}

    def test_after_generic_tool_call(self, anthropic_profile, fake_transport):
        transport = fake_transport(
            _message(
                {"type": "tool_use", "id": "toolu_9", "name": "run_tests", "input": {"path": "tests/"}},
                stop_reason="tool_use",
            ),
            _message(_text("Glad they pass.")),
        )
        session = _session(anthropic_profile, transport)
        tools = [{"name": "run_tests", "description": "Run tests", "input_schema": {"type": "object"}}]
        session.ask_tools("Run the tests", tools)

        session.ask("They passed", stream=False)

        payload = transport.requests[1].payload
        self._assert_plain_anthropic(payload)
        assert payload["messages"] == [{
            "role": "user",
            "content": [
                {"type": "text", "text": "Run the tests"},
                {"type": "text", "text": "They passed"},
            ],
        }]

    def test_after_openai_chat_tool_call(self, openai_chat_profile, fake_transport):
        transport = fake_transport(
            {
                "choices": [{
                    "message": {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [{
                            "id": "call_1",
                            "type": "function",
                            "function": {"name": "run_tests", "arguments": "{}"},
                        }],
                    },
                    "finish_reason": "tool_calls",
                }],
            },
            {"choices": [{"message": {"role": "assistant", "content": "Great."}, "finish_reason": "stop"}]},
        )
        session = _session(openai_chat_profile, transport)
        tools = [{"name": "run_tests", "description": "Run tests", "input_schema": {"type": "object"}}]
        session.ask_tools("Run the tests", tools)

        assert session.ask("They passed", stream=False) == "Great."

        payload = transport.requests[1].payload
        assert "tools" not in payload
        assert payload["messages"] == [{"role": "user", "content": "Run the tests\n\nThey passed"}]

    def test_tool_mode_again_keeps_tool_blocks(self, anthropic_profile, fake_transport):
        transport = fake_transport(
            _message(_text("Let me look."), _editor("view", path="a.py"), stop_reason="tool_use"),
            _message(_text("Nothing to change.")),
            _message(_text("Still nothing.")),
        )
        session = _session(anthropic_profile, transport)
        session.ask_tools("Check a.py", _EDITOR_TOOLS)

        session.ask_tools("Check again", _EDITOR_TOOLS)

        messages = transport.requests[2].payload["messages"]
        assert messages[1]["content"][1]["type"] == "tool_use"
        assert messages[2]["content"][0]["type"] == "tool_result"
        assert [m["role"] for m in messages] == ["user", "assistant", "user", "assistant", "user"]


# ---------------------------------------------------------------------------
# open_session
# ---------------------------------------------------------------------------


class TestOpenSession:
    def test_with_injected_transport(self, fake_transport, output):
        transport = fake_transport(_message(_text("hey")))
        console = Console(file=output, force_terminal=False, width=100)
        with open_session("c", transport=transport, console=console, system="Be kind") as session:
            assert session.profile.vendor == "anthropic"
            assert session.ask("hi") == "hey"
        assert transport.closed
        assert output.getvalue() == "hey\n"
        assert transport.requests[0].payload["system"] == "Be kind"

    def test_silent(self, fake_transport, capsys):
        transport = fake_transport(_message(_text("quiet")))
        session = open_session("c", transport=transport, render=False)
        assert session.ask("hi") == "quiet"
        assert capsys.readouterr().out == ""

    def test_builds_http_transport(self, monkeypatch):
        from chatmux.transport.vendors import AnthropicTransport

        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.delenv("CHATMUX_ANTHROPIC_API_KEY", raising=False)
        session = open_session("c", render=False)
        assert isinstance(session._transport, AnthropicTransport)
        session.close()
