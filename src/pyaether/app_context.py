from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .errors import AetherError
from .events.store import EventStore
from .llm.openai_compat import CompletionProvider
from .mcp.client import MCPClient
from .mcp.models import ToolServerConfig
from .mcp.protocol import InitializeResult
from .mcp.transport import ChildProcessTransport
from .runner import Agent
from .security.policy import PermissionGate, SecurityPolicy, load_policy
from .session.store import SessionStore
from .ui.channel import Channel
from .ui.events import UiMessage


@dataclass
class AppContext:
    policy: SecurityPolicy
    client: MCPClient
    init: InitializeResult
    session: SessionStore
    events: EventStore
    provider: CompletionProvider | None = None

    def close(self) -> None:
        """Terminate the tool process and close its pipes."""
        self.client.close()

    def __enter__(self) -> "AppContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def make_agent(self, inbox: Channel[str], outbox: Channel[UiMessage]) -> Agent:
        if self.provider is None:
            raise AetherError("No completion provider configured.")
        return Agent(inbox, outbox, self.client, self.provider, self.session, events=self.events)

    @staticmethod
    def start(
        tool_server: ToolServerConfig,
        permissions_path: Path,
        *,
        provider: CompletionProvider | None = None,
        persist: bool = True,
        read_timeout: float | None = None,
        session_id: str | None = None,
    ) -> "AppContext":
        """Load the policy, spawn the tool process and handshake.

        Every failure here is fatal for the caller. The tool process is
        terminated before any error propagates.
        """
        policy = load_policy(permissions_path)

        if persist:
            session = SessionStore.create(session_id=session_id)
            events = EventStore.open(session.session_id)
        else:
            session = SessionStore.in_memory(session_id=session_id)
            events = EventStore.in_memory(session.session_id)
        events.append("session.start", {"tool_command": tool_server.command, "policy": policy.to_obj()})

        transport = ChildProcessTransport.start(
            tool_server.command,
            cwd=tool_server.cwd,
            env=tool_server.env,
            read_timeout=read_timeout,
        )
        client = MCPClient(transport, PermissionGate(policy), events=events)
        try:
            init = client.initialize()
        except BaseException:
            client.close()
            raise

        return AppContext(
            policy=policy,
            client=client,
            init=init,
            session=session,
            events=events,
            provider=provider,
        )
