from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from ..errors import CompletionServiceError
from ..mcp.protocol import ToolDescriptor
from ..session.models import AssistantTurn, Message, ToolCall


class CompletionProvider(Protocol):
    def chat(self, messages: Sequence[Message], tools: Sequence[ToolDescriptor] = ()) -> AssistantTurn: ...


def tools_to_openai(tools: Sequence[ToolDescriptor]) -> list[dict[str, Any]]:
    out = []
    for t in tools:
        out.append({
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description or "",
                "parameters": t.input_schema,
            },
        })
    return out


@dataclass
class OpenAICompatProvider:
    """
    Minimal OpenAI-compatible Chat Completions client.
    Works with OpenAI and compatible gateways (Groq, OpenRouter, vLLM, LM Studio, etc.)
    """
    model: str
    base_url: str
    api_key: str
    provider_name: str = "openai"
    temperature: float = 0.2
    timeout: float = 120.0

    def build_payload(self, messages: Sequence[Message], tools: Sequence[ToolDescriptor] = ()) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_openai() for m in messages],
            "temperature": self.temperature,
        }
        # an empty tool list forces a plain-text answer
        if tools:
            payload["tools"] = tools_to_openai(tools)
            payload["tool_choice"] = "auto"
        return payload

    def chat(self, messages: Sequence[Message], tools: Sequence[ToolDescriptor] = ()) -> AssistantTurn:
        if not self.api_key:
            raise CompletionServiceError(f"Missing API key for provider '{self.provider_name}'.")

        url = self.base_url.rstrip("/") + "/chat/completions"
        data = json.dumps(self.build_payload(messages, tools)).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        req = urllib.request.Request(url, data=data, headers=headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else ""
            raise CompletionServiceError(f"Provider HTTPError {e.code}: {e.reason}\n{body}") from e
        except urllib.error.URLError as e:
            raise CompletionServiceError(f"Provider URLError: {e}") from e
        except (TimeoutError, OSError) as e:
            raise CompletionServiceError(f"Provider request failed: {e}") from e

        return parse_completion(raw)


def parse_completion(raw: str) -> AssistantTurn:
    """Decode ``choices[0].message`` of a chat completion response."""
    try:
        obj = json.loads(raw)
        msg = obj["choices"][0]["message"]
    except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
        raise CompletionServiceError(f"Failed to parse provider response: {e}\n{raw[:2000]}") from e
    if not isinstance(msg, dict):
        raise CompletionServiceError("Provider response message is not an object.")

    turn = AssistantTurn(text=msg.get("content") or "")
    for tc in msg.get("tool_calls") or []:
        if isinstance(tc, dict):
            turn.tool_calls.append(ToolCall.from_openai(tc))
    return turn
