from __future__ import annotations
import sys

from pyaether.errors import PermissionDenied
from pyaether.mcp.client import MCPClient, result_text
from pyaether.mcp.transport import ChildProcessTransport
from pyaether.security.policy import PermissionGate, SecurityPolicy

def main():
    policy = SecurityPolicy(global_policy="deny", rules={"calculate_sum": "allow"})
    transport = ChildProcessTransport.start(
        [sys.executable, "-m", "pyaether.mcp.example_server"], read_timeout=10
    )
    with MCPClient(transport, PermissionGate(policy)) as client:
        init = client.initialize()
        print("SERVER:", init.server_info.name, init.server_info.version)

        tools = client.list_tools()
        print("TOOLS:", ", ".join(t.name for t in tools))

        res = client.call_tool("calculate_sum", {"a": 2, "b": 2})
        print("SUM:", result_text(res))

        try:
            client.call_tool("echo", {"text": "hi"})
        except PermissionDenied as e:
            print("DENIED:", e)
        print("WRITES:", transport.send_count)

if __name__ == "__main__":
    main()
