from __future__ import annotations

import itertools
import json
from typing import Any, Protocol

from .. import __version__
from ..errors import EmptyResultError, PermissionDenied, ProtocolError, ToolExecutionError
from ..events.store import EventStore
from ..security.policy import PermissionGate
from .protocol import (
    PROTOCOL_VERSION,
    InitializeResult,
    JsonRpcRequest,
    JsonRpcResponse,
    ServerInfo,
    ToolDescriptor,
    decode_tool_list,
)

CLIENT_NAME = "pyaether"


class Transport(Protocol):
    def send(self, request: JsonRpcRequest) -> None: ...
    def receive_line(self, timeout: float | None = None) -> str: ...
    def close(self) -> None: ...


class MCPClient:
    """A JSON-RPC client for MCP tool servers over one transport.

    Methods used:
      - initialize -> { protocolVersion, capabilities, serverInfo: {name, version} }
      - tools/list -> { tools: [{name, description, inputSchema}] }
      - tools/call -> implementation-defined document, usually { content: [...] }

    Exactly one request is in flight at a time, so the line read right after a
    write is taken to be its reply. Replies carrying an older id belong to a
    request that timed out and are skipped. Every tools/call passes the permission gate
    first; a denied call never reaches the transport.
    """

    def __init__(self, transport: Transport, gate: PermissionGate, *, events: EventStore | None = None):
        self.transport = transport
        self.gate = gate
        self.events = events
        self.server_info: ServerInfo | None = None
        self._id_iter = itertools.count(1)

    def next_id(self) -> int:
        return next(self._id_iter)

    def _exchange(self, method: str, params: dict[str, Any] | None = None) -> JsonRpcResponse:
        rid = self.next_id()
        self.transport.send(JsonRpcRequest(method=method, params=params, id=rid))
        resp = JsonRpcResponse.decode(self.transport.receive_line())
        # late replies to requests that already timed out
        while resp.id is not None and resp.id < rid:
            if self.events:
                self.events.append("mcp.stale_reply", {"method": method, "sent": rid, "received": resp.id})
            resp = JsonRpcResponse.decode(self.transport.receive_line())
        if resp.id is not None and resp.id != rid and self.events:
            self.events.append("mcp.id_mismatch", {"method": method, "sent": rid, "received": resp.id})
        return resp

    def _result_or_raise(self, method: str, resp: JsonRpcResponse) -> Any:
        if resp.error is not None:
            raise ProtocolError(resp.error.code, f"{method} failed: {resp.error.message}", resp.error.data)
        if not resp.has_result:
            raise EmptyResultError(f"Tool server returned no result for {method}")
        return resp.result

    def initialize(self) -> InitializeResult:
        params = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": CLIENT_NAME, "version": __version__},
        }
        resp = self._exchange("initialize", params)
        init = InitializeResult.from_obj(self._result_or_raise("initialize", resp))
        self.server_info = init.server_info
        self.transport.send(JsonRpcRequest(method="notifications/initialized"))
        if self.events:
            self.events.append(
                "mcp.initialized",
                {"server": init.server_info.name, "version": init.server_info.version, "protocol": init.protocol_version},
            )
        return init

    def list_tools(self) -> tuple[ToolDescriptor, ...]:
        resp = self._exchange("tools/list")
        tools = decode_tool_list(self._result_or_raise("tools/list", resp))
        if self.events:
            self.events.append("mcp.tools", {"names": [t.name for t in tools]})
        return tools

    def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        if not self.gate.allows(name):
            if self.events:
                self.events.append("tool.denied", {"tool": name})
            raise PermissionDenied(name)

        resp = self._exchange("tools/call", {"name": name, "arguments": arguments})
        if resp.error is not None:
            raise ToolExecutionError(resp.error.message, resp.error.code)
        if not resp.has_result:
            raise EmptyResultError(f"Tool '{name}' returned no result")
        return resp.result

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> "MCPClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def result_text(result: Any) -> str:
    """Render a tools/call result for the transcript.

    The text parts of a ``content`` array are joined; anything else is sent
    to the model as compact JSON.
    """
    if isinstance(result, str):
        return result
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        parts = result["content"]
        if parts and all(isinstance(p, dict) and p.get("type") == "text" for p in parts):
            return "\n".join(str(p.get("text", "")) for p in parts)
    return json.dumps(result, ensure_ascii=False)
