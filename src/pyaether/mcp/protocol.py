from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from ..errors import DecodeError

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"

METHOD_NOT_FOUND = -32601


@dataclass
class JsonRpcRequest:
    method: str
    params: dict[str, Any] | None = None
    # Notifications carry no id and get no reply.
    id: int | None = None
    jsonrpc: str = JSONRPC_VERSION

    def to_obj(self) -> dict[str, Any]:
        d: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            d["params"] = self.params
        if self.id is not None:
            d["id"] = self.id
        return d

    def encode(self) -> str:
        """Canonical single-line text form, without the trailing newline."""
        return json.dumps(self.to_obj(), ensure_ascii=False, separators=(",", ":"))


@dataclass
class JsonRpcError:
    code: int
    message: str
    data: Any = None


@dataclass
class JsonRpcResponse:
    id: int | None = None
    result: Any = None
    error: JsonRpcError | None = None
    has_result: bool = False
    jsonrpc: str = JSONRPC_VERSION

    @staticmethod
    def decode(line: str) -> "JsonRpcResponse":
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Response is not valid JSON: {e}") from e
        if not isinstance(obj, dict):
            raise DecodeError(f"Response must be a JSON object, got {type(obj).__name__}")

        rid = obj.get("id")
        if rid is not None and (isinstance(rid, bool) or not isinstance(rid, int)):
            raise DecodeError(f"Response id must be an integer, got {rid!r}")

        err = None
        raw_err = obj.get("error")
        if raw_err is not None:
            if not isinstance(raw_err, dict):
                raise DecodeError("Response error must be an object")
            code = raw_err.get("code", 0)
            message = raw_err.get("message", "")
            if isinstance(code, bool) or not isinstance(code, int) or not isinstance(message, str):
                raise DecodeError(f"Malformed error object: {raw_err!r}")
            err = JsonRpcError(code=code, message=message, data=raw_err.get("data"))

        return JsonRpcResponse(
            id=rid,
            result=obj.get("result"),
            error=err,
            # a literal null result still counts as "no result"
            has_result=obj.get("result") is not None,
            jsonrpc=str(obj.get("jsonrpc", "")),
        )


# ---- MCP payloads ----

@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str | None
    input_schema: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_obj(obj: Any) -> "ToolDescriptor":
        if not isinstance(obj, dict):
            raise DecodeError(f"Tool entry must be an object, got {obj!r}")
        name = obj.get("name")
        desc = obj.get("description")
        schema = obj.get("inputSchema")
        if not isinstance(name, str) or not name:
            raise DecodeError(f"Tool entry has no valid name: {obj!r}")
        if desc is not None and not isinstance(desc, str):
            raise DecodeError(f"Tool '{name}' description must be a string")
        if not isinstance(schema, dict):
            raise DecodeError(f"Tool '{name}' is missing an inputSchema object")
        return ToolDescriptor(name=name, description=desc, input_schema=schema)


@dataclass(frozen=True)
class ServerInfo:
    name: str
    version: str


@dataclass(frozen=True)
class InitializeResult:
    protocol_version: str
    capabilities: dict[str, Any]
    server_info: ServerInfo

    @staticmethod
    def from_obj(obj: Any) -> "InitializeResult":
        if not isinstance(obj, dict):
            raise DecodeError("initialize result must be an object")
        pv = obj.get("protocolVersion")
        caps = obj.get("capabilities", {})
        si = obj.get("serverInfo")
        if not isinstance(pv, str):
            raise DecodeError("initialize result is missing protocolVersion")
        if not isinstance(caps, dict):
            raise DecodeError("initialize result capabilities must be an object")
        if not isinstance(si, dict) or not isinstance(si.get("name"), str) or not isinstance(si.get("version"), str):
            raise DecodeError("initialize result has an invalid serverInfo")
        return InitializeResult(
            protocol_version=pv,
            capabilities=caps,
            server_info=ServerInfo(name=si["name"], version=si["version"]),
        )


def decode_tool_list(result: Any) -> tuple[ToolDescriptor, ...]:
    if not isinstance(result, dict) or not isinstance(result.get("tools"), list):
        raise DecodeError("tools/list result must be an object with a 'tools' array")
    return tuple(ToolDescriptor.from_obj(t) for t in result["tools"])
