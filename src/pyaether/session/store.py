from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from platformdirs import user_data_dir

from ..errors import TranscriptError
from .models import Message, Role

APP_NAME = "pyaether"


def _sessions_dir() -> Path:
    root = Path(user_data_dir(APP_NAME))
    d = root / "sessions"
    d.mkdir(parents=True, exist_ok=True)
    return d


@dataclass
class SessionStore:
    """Append-only conversation transcript.

    Messages are never removed or rewritten. When ``path`` is set every
    appended message is also written as one jsonl line.
    """

    session_id: str
    path: Path | None
    _messages: list[Message]

    @staticmethod
    def create(session_id: str | None = None, directory: Path | None = None) -> "SessionStore":
        sid = session_id or uuid.uuid4().hex[:12]
        path = (directory or _sessions_dir()) / f"{sid}.jsonl"
        return SessionStore(session_id=sid, path=path, _messages=[])

    @staticmethod
    def in_memory(session_id: str | None = None) -> "SessionStore":
        return SessionStore(session_id=session_id or uuid.uuid4().hex[:12], path=None, _messages=[])

    @staticmethod
    def load(session_id: str, directory: Path | None = None) -> "SessionStore":
        """Read a saved transcript (for replay; not resumed into a live agent)."""
        path = (directory or _sessions_dir()) / f"{session_id}.jsonl"
        if not path.exists():
            raise FileNotFoundError(f"No saved session: {path}")
        msgs: list[Message] = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                msgs.append(Message.from_obj(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError):
                # Best-effort: ignore a partial trailing line from an interrupted write.
                continue
        return SessionStore(session_id=session_id, path=path, _messages=msgs)

    @property
    def messages(self) -> Sequence[Message]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def _pending_call_ids(self) -> set[str]:
        """Tool call ids of the latest assistant message that still lack a tool reply."""
        for i in range(len(self._messages) - 1, -1, -1):
            m = self._messages[i]
            if m.role == Role.ASSISTANT:
                if not m.tool_calls:
                    return set()
                answered = {x.tool_call_id for x in self._messages[i + 1:] if x.role == Role.TOOL}
                return {tc.id for tc in m.tool_calls} - answered
            if m.role == Role.USER:
                return set()
        return set()

    def append(self, msg: Message) -> None:
        if msg.role == Role.TOOL:
            if not msg.tool_call_id or msg.tool_call_id not in self._pending_call_ids():
                raise TranscriptError(f"Tool message {msg.tool_call_id!r} does not answer a pending tool call")
        elif msg.role == Role.USER and self._pending_call_ids():
            raise TranscriptError("User message while tool calls are still unanswered")

        self._messages.append(msg)
        if self.path is None:
            return
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(msg.to_obj(), ensure_ascii=False) + "\n")
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                # Best-effort: some filesystems do not support fsync.
                pass
