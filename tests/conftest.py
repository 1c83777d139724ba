from __future__ import annotations

import json
from collections import deque
from typing import Any, Callable

import pytest

from pyaether.errors import TransportClosed
from pyaether.events.store import EventStore
from pyaether.mcp import example_server
from pyaether.mcp.client import MCPClient
from pyaether.mcp.protocol import JsonRpcRequest
from pyaether.runner import Agent
from pyaether.security.policy import PermissionGate, SecurityPolicy
from pyaether.session.models import AssistantTurn, ToolCall
from pyaether.session.store import SessionStore
from pyaether.ui.channel import Channel
from pyaether.ui.events import UiKind, UiMessage


class FakeTransport:
    """In-memory transport.

    Replies come from a queue of scripted lines (str, dict, or an exception to
    raise), or, when ``responder`` is set, are computed from each request the
    way the example server would answer it.
    """

    def __init__(self, replies: list[Any] | None = None, responder: Callable | None = None):
        self.sent: list[JsonRpcRequest] = []
        self.replies: deque = deque(replies or [])
        self.responder = responder
        self.closed = False
        self.eof = False

    @property
    def send_count(self) -> int:
        return len(self.sent)

    @property
    def requests(self) -> list[JsonRpcRequest]:
        return [r for r in self.sent if r.id is not None]

    def send(self, request: JsonRpcRequest) -> None:
        self.sent.append(request)
        if self.responder is not None and request.id is not None and not self.eof:
            result, error = self.responder(request.method, request.params or {})
            msg: dict[str, Any] = {"jsonrpc": "2.0", "id": request.id}
            if error is not None:
                msg["error"] = error
            else:
                msg["result"] = result
            self.replies.append(msg)

    def receive_line(self, timeout: float | None = None) -> str:
        if self.eof or not self.replies:
            raise TransportClosed("Tool process closed the connection (EOF).")
        r = self.replies.popleft()
        if isinstance(r, BaseException):
            raise r
        if isinstance(r, str):
            return r
        return json.dumps(r)

    def close(self) -> None:
        self.closed = True


class FakeProvider:
    """Completion service double: returns scripted turns, records every request."""

    def __init__(self, turns: list[Any]):
        self.turns = list(turns)
        self.calls: list[tuple[list, tuple]] = []

    def chat(self, messages, tools=()):
        self.calls.append((list(messages), tuple(tools)))
        if not self.turns:
            raise AssertionError("unexpected completion request")
        t = self.turns.pop(0)
        if isinstance(t, BaseException):
            raise t
        return t


def reply(text: str) -> AssistantTurn:
    return AssistantTurn(text=text)


def tool_use(*calls: tuple[str, str, str]) -> AssistantTurn:
    return AssistantTurn(text="", tool_calls=[ToolCall(id=i, name=n, arguments=a) for i, n, a in calls])


def drain(ch: Channel[UiMessage]) -> list[UiMessage]:
    out = []
    while True:
        m = ch.try_recv()
        if m is None:
            return out
        ch.task_done()
        out.append(m)


def kinds(msgs: list[UiMessage], kind: UiKind) -> list[str]:
    return [m.text for m in msgs if m.kind == kind]


class AgentHarness:
    def __init__(self, policy: SecurityPolicy, turns: list[Any], transport: FakeTransport | None = None):
        self.transport = transport or FakeTransport(responder=example_server.handle)
        self.events = EventStore.in_memory()
        self.client = MCPClient(self.transport, PermissionGate(policy), events=self.events)
        self.provider = FakeProvider(turns)
        self.inbox: Channel[str] = Channel()
        self.outbox: Channel[UiMessage] = Channel()
        self.session = SessionStore.in_memory("test")
        self.agent = Agent(self.inbox, self.outbox, self.client, self.provider, self.session, events=self.events)

    def start(self) -> list[UiMessage]:
        assert self.agent.start()
        return drain(self.outbox)

    def turn(self, text: str) -> list[UiMessage]:
        self.agent.handle_turn(text)
        return drain(self.outbox)


@pytest.fixture
def allow_all() -> SecurityPolicy:
    return SecurityPolicy(global_policy="allow")


@pytest.fixture
def sum_only() -> SecurityPolicy:
    return SecurityPolicy(global_policy="deny", rules={"calculate_sum": "allow"})
