from __future__ import annotations

import json
import time
import uuid
from typing import Any, Sequence

from .errors import AetherError, CompletionServiceError, TransportError
from .events.store import EventStore
from .llm.openai_compat import CompletionProvider
from .mcp.client import MCPClient, result_text
from .mcp.protocol import ToolDescriptor
from .session.models import AssistantTurn, Message, Role, ToolCall
from .session.store import SessionStore
from .ui.channel import Channel
from .ui.events import UiMessage

SYSTEM_PROMPT = """You are pyaether, a concise assistant.
Rules:
- Use the provided tools when a question needs them; otherwise answer directly.
- Do not fabricate tool outputs.
- Keep tool arguments minimal and correct.
"""

MAX_TOOL_RESULT_CHARS = 20000
LOG_PREVIEW_CHARS = 500


def _preview(s: str, limit: int = LOG_PREVIEW_CHARS) -> str:
    if len(s) > limit:
        return s[:limit] + "... (truncated)"
    return s


def parse_arguments(raw: str) -> tuple[dict[str, Any], bool]:
    """Decode tool-call argument text.

    Returns ``(arguments, ok)``. Malformed or non-object JSON degrades to an
    empty document so the turn can continue.
    """
    if not raw or not raw.strip():
        return {}, True
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        return {}, False
    if not isinstance(args, dict):
        return {}, False
    return args, True


class Agent:
    """Drives one conversation: user text in, UI events out, tools in between.

    Turns are strictly sequential. Within a tool-use turn the calls run in
    the order the model listed them, then one more completion is requested
    with no tools so the model answers in plain text.
    """

    def __init__(
        self,
        inbox: Channel[str],
        outbox: Channel[UiMessage],
        client: MCPClient,
        provider: CompletionProvider,
        session: SessionStore | None = None,
        *,
        events: EventStore | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.inbox = inbox
        self.outbox = outbox
        self.client = client
        self.provider = provider
        self.session = session or SessionStore.in_memory()
        self.events = events
        self.system_prompt = system_prompt
        self.tools: tuple[ToolDescriptor, ...] = ()
        self.started = False

    # ---- UI helpers: fire-and-forget ----

    def log(self, text: str) -> None:
        self.outbox.send(UiMessage.log(text))

    def error(self, text: str) -> None:
        self.outbox.send(UiMessage.error(text))

    def send_ai(self, text: str) -> None:
        self.outbox.send(UiMessage.ai(text))

    def _event(self, event_type: str, data: dict[str, Any]) -> None:
        if self.events:
            self.events.append(event_type, data)

    @property
    def transcript(self) -> Sequence[Message]:
        return self.session.messages

    # ---- lifecycle ----

    def start(self) -> bool:
        """Discover tools and seed the transcript. False means the agent cannot run."""
        if self.started:
            return True
        self.log("Agent online.")
        try:
            self.tools = self.client.list_tools()
        except AetherError as e:
            self.error(f"Tool discovery failed: {e}")
            return False
        self.log(f"Tools discovered: {len(self.tools)}")
        if not any(m.role == Role.SYSTEM for m in self.transcript):
            self.session.append(Message(role=Role.SYSTEM, content=self.system_prompt))
        self.started = True
        return True

    def run(self) -> None:
        if not self.start():
            self.inbox.close()
            return
        while True:
            user_input = self.inbox.recv()
            if user_input is None:
                self.log("Agent shutting down.")
                return
            try:
                self.handle_turn(user_input)
            except AetherError as e:
                self.error(f"Cycle error: {e}")
            except Exception as e:  # the agent thread must survive a bad turn
                self.error(f"Cycle error ({type(e).__name__}): {e}")
            finally:
                self.inbox.task_done()

    # ---- one turn ----

    def _complete(self, tools: Sequence[ToolDescriptor]) -> AssistantTurn:
        self._event("llm.request", {"messages_count": len(self.transcript), "tools_count": len(tools)})
        t0 = time.perf_counter()
        try:
            turn = self.provider.chat(self.transcript, tools)
        except CompletionServiceError as e:
            self._event("llm.error", {"error": str(e)[:2000]})
            raise
        self._event(
            "llm.response",
            {
                "elapsed_ms": int((time.perf_counter() - t0) * 1000),
                "text": (turn.text or "")[:4000],
                "tool_calls": [{"id": tc.id, "name": tc.name, "arguments": tc.arguments} for tc in turn.tool_calls],
            },
        )
        return turn

    def _normalize_call_ids(self, calls: list[ToolCall]) -> None:
        seen: set[str] = set()
        for i, tc in enumerate(calls):
            if not tc.id or tc.id in seen:
                tc.id = f"call_{self.session.session_id}_{i}_{uuid.uuid4().hex[:8]}"
            seen.add(tc.id)

    def handle_turn(self, user_input: str) -> None:
        self.log("Thinking...")
        self.session.append(Message(role=Role.USER, content=user_input))

        try:
            turn = self._complete(self.tools)
        except CompletionServiceError as e:
            self.error(f"Turn failed: {e}")
            return

        if not turn.tool_calls:
            self.session.append(turn.to_message())
            self.send_ai(turn.text or "No content")
            return

        self._normalize_call_ids(turn.tool_calls)
        self.session.append(turn.to_message())
        self.log(f"Tools requested: {len(turn.tool_calls)}")

        for tc in turn.tool_calls:
            content = self.execute_tool_call(tc)
            self.session.append(Message(role=Role.TOOL, content=content, tool_call_id=tc.id))

        try:
            final = self._complete(())
        except CompletionServiceError as e:
            self.error(f"Turn failed: {e}")
            return
        # the final request offers no tools, so any tool_calls here are ignored
        final.tool_calls = []
        self.session.append(final.to_message())
        self.send_ai(final.text or "No content")

    def execute_tool_call(self, tc: ToolCall) -> str:
        """Run one requested call; always returns the text for the tool message."""
        self.log(f"EXEC: {tc.name}({tc.arguments})")
        args, ok = parse_arguments(tc.arguments)
        if not ok:
            self.log(f"Invalid arguments for {tc.name}; calling with {{}}")
            self._event("tool.bad_arguments", {"tool": tc.name, "tool_call_id": tc.id, "raw": tc.arguments[:2000]})

        self._event("tool.call", {"tool": tc.name, "tool_call_id": tc.id, "args": args})
        t0 = time.perf_counter()
        is_error = False
        try:
            result = self.client.call_tool(tc.name, args)
            content = result_text(result)
        except TransportError as e:
            is_error = True
            content = f"Error: {e}"
            self.error(f"Tool process failure during {tc.name}: {e}")
        except AetherError as e:
            is_error = True
            content = f"Error: {e}"

        self._event(
            "tool.result",
            {
                "tool": tc.name,
                "tool_call_id": tc.id,
                "is_error": is_error,
                "elapsed_ms": int((time.perf_counter() - t0) * 1000),
                "content_len": len(content),
                "content_preview": content[:4000],
            },
        )

        # Truncate overly-long tool results to keep context manageable.
        if len(content) > MAX_TOOL_RESULT_CHARS:
            head = content[: MAX_TOOL_RESULT_CHARS // 2]
            tail = content[-MAX_TOOL_RESULT_CHARS // 2:]
            content = head + "\n\n... (truncated) ...\n\n" + tail

        self.log(f"RESULT: {_preview(content)}")
        return content
