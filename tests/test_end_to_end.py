"""Runs the agent against the real example tool server in a child process."""
from __future__ import annotations

import json
import sys
import threading

import pytest

from conftest import FakeProvider, drain, kinds, reply, tool_use
from pyaether.app_context import AppContext
from pyaether.errors import PolicyLoadError, ProtocolError, TransportClosed, TransportIOError
from pyaether.mcp.models import ToolServerConfig
from pyaether.session.models import Role
from pyaether.ui.channel import Channel
from pyaether.ui.console import ConsoleDisplay
from pyaether.ui.events import UiKind, UiMessage

SERVER = [sys.executable, "-m", "pyaether.mcp.example_server"]


def _policy(tmp_path, rules, default="deny"):
    p = tmp_path / "permissions.json"
    p.write_text(json.dumps({"version": "1.0", "global_policy": default, "rules": rules}))
    return p


def _start(tmp_path, rules, turns, extra_args=()):
    provider = FakeProvider(turns)
    ctx = AppContext.start(
        ToolServerConfig(command=SERVER + list(extra_args)),
        _policy(tmp_path, rules),
        provider=provider,
        persist=False,
        read_timeout=10,
    )
    return ctx, provider


def test_handshake_reports_server_info(tmp_path):
    ctx, _ = _start(tmp_path, {}, [])
    with ctx:
        assert ctx.init.server_info.name == "ExampleTools"
        assert ctx.init.protocol_version == "2024-11-05"
        assert "mcp.initialized" in ctx.events.types()


def test_allowed_sum_round_trip(tmp_path):
    ctx, provider = _start(
        tmp_path,
        {"calculate_sum": "allow"},
        [tool_use(("call_1", "calculate_sum", '{"a": 2, "b": 2}')), reply("The answer is 4.")],
    )
    with ctx:
        inbox: Channel[str] = Channel()
        outbox: Channel[UiMessage] = Channel()
        agent = ctx.make_agent(inbox, outbox)
        assert agent.start()
        agent.handle_turn("what is 2+2")

        msgs = drain(outbox)
        tool_msgs = [m for m in agent.transcript if m.role == Role.TOOL]
        assert [m.content for m in tool_msgs] == ["The sum is 4"]
        assert kinds(msgs, UiKind.AI) == ["The answer is 4."]
        assert provider.calls[-1][1] == ()


def test_denied_sum_never_reaches_the_server(tmp_path):
    ctx, _ = _start(
        tmp_path,
        {"calculate_sum": "deny"},
        [tool_use(("call_1", "calculate_sum", '{"a": 2, "b": 2}')), reply("Not allowed.")],
    )
    with ctx:
        transport = ctx.client.transport
        agent = ctx.make_agent(Channel(), Channel())
        assert agent.start()
        sends = transport.send_count
        agent.handle_turn("what is 2+2")
        assert transport.send_count == sends
        assert agent.transcript[-2].content.startswith("Error: Permission denied")


def test_output_closed_mid_session(tmp_path):
    ctx, _ = _start(
        tmp_path,
        {"echo": "allow"},
        [
            tool_use(("c1", "echo", '{"text": "one"}')),
            reply("first"),
            tool_use(("c2", "echo", '{"text": "two"}')),
            reply("tool went away"),
            reply("still listening"),
        ],
        extra_args=["--close-after", "1"],
    )
    with ctx:
        outbox: Channel[UiMessage] = Channel()
        agent = ctx.make_agent(Channel(), outbox)
        assert agent.start()

        agent.handle_turn("echo one")
        assert agent.transcript[-2].content == "one"
        drain(outbox)

        with pytest.raises(TransportClosed):
            ctx.client.call_tool("echo", {"text": "direct"})

        agent.handle_turn("echo two")
        msgs = drain(outbox)
        assert agent.transcript[-2].content.startswith("Error: Tool process closed")
        assert kinds(msgs, UiKind.ERROR)
        assert kinds(msgs, UiKind.AI) == ["tool went away"]

        agent.handle_turn("hello?")
        assert kinds(drain(outbox), UiKind.AI) == ["still listening"]


def test_console_session_with_agent_thread(tmp_path):
    ctx, _ = _start(
        tmp_path,
        {"calculate_sum": "allow"},
        [tool_use(("call_1", "calculate_sum", '{"a": 2, "b": 2}')), reply("It is 4.")],
    )
    lines = iter(["what is 2+2", "exit"])
    with ctx:
        inbox: Channel[str] = Channel()
        outbox: Channel[UiMessage] = Channel()
        agent = ctx.make_agent(inbox, outbox)
        display = ConsoleDisplay(inbox, outbox, input_fn=lambda: next(lines))
        display.start_renderer()
        assert agent.start()
        worker = threading.Thread(target=agent.run, daemon=True)
        worker.start()

        display.repl()
        worker.join(timeout=10)
        display.stop_renderer()

        assert not worker.is_alive()
        assert [m.text for m in display.history if m.kind == UiKind.AI] == ["It is 4."]
        assert [m.text for m in display.history if m.kind == UiKind.USER] == ["what is 2+2"]


def test_missing_policy_is_fatal_before_spawning(tmp_path):
    with pytest.raises(PolicyLoadError):
        AppContext.start(ToolServerConfig(command=SERVER), tmp_path / "missing.json", persist=False)


def test_spawn_failure_is_fatal(tmp_path):
    with pytest.raises(TransportIOError):
        AppContext.start(
            ToolServerConfig(command=[str(tmp_path / "not-a-tool")]),
            _policy(tmp_path, {}),
            persist=False,
        )


def test_handshake_error_is_fatal(tmp_path):
    code = "import sys; sys.stdin.readline(); print('{\"jsonrpc\":\"2.0\",\"id\":1,\"error\":{\"code\":-32603,\"message\":\"no\"}}', flush=True); sys.stdin.read()"
    with pytest.raises(ProtocolError) as ei:
        AppContext.start(
            ToolServerConfig(command=[sys.executable, "-c", code]),
            _policy(tmp_path, {}),
            persist=False,
            read_timeout=10,
        )
    assert ei.value.code == -32603
