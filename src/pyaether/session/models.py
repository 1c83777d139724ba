from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str  # raw JSON text, parsed only when the tool is invoked

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @staticmethod
    def from_openai(obj: dict[str, Any]) -> "ToolCall":
        fn = obj.get("function") or {}
        args = fn.get("arguments")
        if args is None:
            args = "{}"
        elif not isinstance(args, str):
            # some gateways send the arguments already decoded
            args = json.dumps(args, ensure_ascii=False)
        return ToolCall(id=str(obj.get("id") or ""), name=str(fn.get("name") or ""), arguments=args)


@dataclass
class Message:
    role: Role
    # content can be null in OpenAI-compatible APIs when tool_calls are present
    content: str | None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    def to_openai(self) -> dict[str, Any]:
        d: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.role == Role.ASSISTANT and self.tool_calls:
            d["tool_calls"] = [tc.to_openai() for tc in self.tool_calls]
        if self.tool_call_id:
            d["tool_call_id"] = self.tool_call_id
        return d

    def to_obj(self) -> dict[str, Any]:
        return self.to_openai()

    @staticmethod
    def from_obj(obj: dict[str, Any]) -> "Message":
        tcs = obj.get("tool_calls")
        return Message(
            role=Role(obj["role"]),
            content=obj.get("content"),
            tool_calls=[ToolCall.from_openai(t) for t in tcs] if tcs else None,
            tool_call_id=obj.get("tool_call_id"),
        )


@dataclass
class AssistantTurn:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    def to_message(self) -> Message:
        return Message(
            role=Role.ASSISTANT,
            content=(self.text or None) if self.tool_calls else self.text,
            tool_calls=list(self.tool_calls) or None,
        )
