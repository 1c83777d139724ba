"""Example MCP tool server speaking newline-delimited JSON-RPC on stdio.

Run with ``python -m pyaether.mcp.example_server``. ``--close-after N``
closes stdout after N tools/call replies (while still reading stdin), which
lets tests exercise a tool process that goes away mid-session.
"""
from __future__ import annotations

import argparse
import json
import os
import sys

from .protocol import METHOD_NOT_FOUND, PROTOCOL_VERSION

SERVER_NAME = "ExampleTools"
SERVER_VERSION = "1.0"

TOOLS = [
    {
        "name": "calculate_sum",
        "description": "Adds two numbers together",
        "inputSchema": {
            "type": "object",
            "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
            "required": ["a", "b"],
        },
    },
    {
        "name": "echo",
        "description": "Echo back the provided text.",
        "inputSchema": {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    },
]


def _reply(rid, result=None, error=None):
    msg = {"jsonrpc": "2.0", "id": rid}
    if error is not None:
        msg["error"] = error
    else:
        msg["result"] = result
    sys.stdout.write(json.dumps(msg, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def _not_found(what: str) -> dict:
    return {"code": METHOD_NOT_FOUND, "message": "Method not found", "data": what}


def _number(v) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return 0.0
    return float(v)


def _fmt(n: float) -> str:
    return str(int(n)) if n == int(n) else str(n)


def _text(s: str) -> dict:
    return {"content": [{"type": "text", "text": s}]}


def handle(method: str, params: dict):
    """Return ``(result, error)`` for one request."""
    if method == "initialize":
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        }, None
    if method == "tools/list":
        return {"tools": TOOLS}, None
    if method == "tools/call":
        name = params.get("name")
        args = params.get("arguments") or {}
        if not isinstance(args, dict):
            args = {}
        if name == "calculate_sum":
            total = _number(args.get("a")) + _number(args.get("b"))
            return _text(f"The sum is {_fmt(total)}"), None
        if name == "echo":
            return _text(str(args.get("text", ""))), None
        return None, _not_found(f"Unknown tool: {name}")
    return None, _not_found(f"Unknown method: {method}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--close-after", type=int, default=None, help="Close stdout after N tools/call replies.")
    opts = parser.parse_args(argv)

    calls = 0
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            req = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(req, dict):
            continue
        rid = req.get("id")
        if rid is None:
            # notification, e.g. notifications/initialized
            continue
        if sys.stdout.closed:
            continue

        method = str(req.get("method", ""))
        params = req.get("params") or {}
        result, error = handle(method, params if isinstance(params, dict) else {})
        _reply(rid, result, error)

        if method == "tools/call":
            calls += 1
            if opts.close_after is not None and calls >= opts.close_after:
                sys.stdout.close()
                # sys.stdout does not own fd 1
                try:
                    os.close(1)
                except OSError:
                    pass


if __name__ == "__main__":
    main()
