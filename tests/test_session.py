from __future__ import annotations

import json
import queue

import pytest

from pyaether.errors import CompletionServiceError, TranscriptError
from pyaether.events.store import EventStore
from pyaether.llm.openai_compat import OpenAICompatProvider, parse_completion
from pyaether.mcp.protocol import ToolDescriptor
from pyaether.session.models import AssistantTurn, Message, Role, ToolCall
from pyaether.session.store import SessionStore
from pyaether.ui.channel import Channel


def _assistant_with_calls(*ids):
    return AssistantTurn(tool_calls=[ToolCall(id=i, name="echo", arguments="{}") for i in ids]).to_message()


def test_transcript_is_append_only_and_persisted(tmp_path):
    store = SessionStore.create("s1", directory=tmp_path)
    store.append(Message(role=Role.SYSTEM, content="sys"))
    store.append(Message(role=Role.USER, content="hi"))
    store.append(_assistant_with_calls("c1"))
    store.append(Message(role=Role.TOOL, content="ok", tool_call_id="c1"))
    store.append(Message(role=Role.ASSISTANT, content="done"))

    assert isinstance(store.messages, tuple)
    loaded = SessionStore.load("s1", directory=tmp_path)
    assert [m.role for m in loaded.messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
    assert loaded.messages[2].tool_calls[0].id == "c1"
    assert loaded.messages[3].tool_call_id == "c1"


def test_tool_message_must_answer_a_pending_call():
    store = SessionStore.in_memory()
    store.append(Message(role=Role.USER, content="hi"))
    with pytest.raises(TranscriptError):
        store.append(Message(role=Role.TOOL, content="x", tool_call_id="c1"))

    store.append(_assistant_with_calls("c1", "c2"))
    with pytest.raises(TranscriptError):
        store.append(Message(role=Role.TOOL, content="x", tool_call_id="zzz"))
    store.append(Message(role=Role.TOOL, content="x", tool_call_id="c1"))
    with pytest.raises(TranscriptError):
        store.append(Message(role=Role.TOOL, content="again", tool_call_id="c1"))
    with pytest.raises(TranscriptError):
        store.append(Message(role=Role.USER, content="too early"))
    store.append(Message(role=Role.TOOL, content="y", tool_call_id="c2"))
    store.append(Message(role=Role.USER, content="now fine"))


def test_openai_message_shapes():
    msg = _assistant_with_calls("c1")
    d = msg.to_openai()
    assert d["role"] == "assistant"
    assert d["content"] is None
    assert d["tool_calls"] == [{"id": "c1", "type": "function", "function": {"name": "echo", "arguments": "{}"}}]
    assert Message(role=Role.TOOL, content="r", tool_call_id="c1").to_openai() == {
        "role": "tool", "content": "r", "tool_call_id": "c1",
    }


def test_parse_completion_keeps_raw_arguments():
    raw = json.dumps({
        "choices": [{"message": {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {"id": "call_1", "type": "function", "function": {"name": "calculate_sum", "arguments": "{\"a\":2,\"b\":2}"}},
                {"id": "call_2", "type": "function", "function": {"name": "echo", "arguments": {"text": "hi"}}},
            ],
        }}]
    })
    turn = parse_completion(raw)
    assert turn.text == ""
    assert turn.tool_calls[0] == ToolCall("call_1", "calculate_sum", '{"a":2,"b":2}')
    assert json.loads(turn.tool_calls[1].arguments) == {"text": "hi"}


@pytest.mark.parametrize("raw", ["<html>", "{}", '{"choices": []}'])
def test_parse_completion_failures(raw):
    with pytest.raises(CompletionServiceError):
        parse_completion(raw)


def test_payload_omits_tools_when_empty():
    p = OpenAICompatProvider(model="m", base_url="http://x", api_key="k")
    msgs = [Message(role=Role.USER, content="hi")]
    assert "tools" not in p.build_payload(msgs, ())

    tool = ToolDescriptor("calculate_sum", None, {"type": "object"})
    payload = p.build_payload(msgs, (tool,))
    assert payload["tools"] == [{
        "type": "function",
        "function": {"name": "calculate_sum", "description": "", "parameters": {"type": "object"}},
    }]
    assert payload["tool_choice"] == "auto"


def test_unreachable_provider_is_a_completion_error():
    p = OpenAICompatProvider(model="m", base_url="http://127.0.0.1:9", api_key="k", timeout=2)
    with pytest.raises(CompletionServiceError):
        p.chat([Message(role=Role.USER, content="hi")])


def test_channel_semantics():
    ch: Channel[str] = Channel()
    assert ch.send("a") and ch.send("b")
    assert ch.recv() == "a"
    ch.task_done()
    ch.close()
    assert ch.send("c") is False
    assert ch.recv() == "b"
    ch.task_done()
    assert ch.recv() is None
    assert ch.recv() is None
    ch.join()

    with pytest.raises(queue.Empty):
        Channel().recv(timeout=0.01)


def test_event_store_round_trip(tmp_path):
    es = EventStore.open("s1", directory=tmp_path)
    es.append("tool.call", {"tool": "echo"})
    es.append("tool.result", {"tool": "echo", "is_error": False})
    with (tmp_path / "s1.jsonl").open("a") as f:
        f.write("{partial")
    assert [e.type for e in EventStore.open("s1", directory=tmp_path).iter_events()] == ["tool.call", "tool.result"]
