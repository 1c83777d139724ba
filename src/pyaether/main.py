from __future__ import annotations

import json
import shlex
import threading
from datetime import datetime
from pathlib import Path
from typing import NoReturn

import typer
from rich.align import Align
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .app_context import AppContext
from .config.loader import DEFAULT_CONFIG, AppConfig, load_app_config
from .errors import AetherError, PermissionDenied
from .events.store import EventStore
from .llm.factory import resolve_provider
from .mcp.client import result_text
from .mcp.models import ToolServerConfig
from .session.models import Role
from .session.store import SessionStore
from .ui.channel import Channel
from .ui.console import ConsoleDisplay
from .ui.events import UiMessage

app = typer.Typer(add_completion=False, help="pyaether: a policy-gated MCP tool agent.")
console = Console()


def _fatal(msg: str) -> NoReturn:
    console.print(f"[bold red]Fatal:[/bold red] {escape(msg)}", highlight=False)
    raise typer.Exit(code=1)


def _load_config(config: Path, *, required: bool) -> AppConfig:
    try:
        return load_app_config(config, required=required)
    except AetherError as e:
        _fatal(str(e))


def _tool_server(cfg: AppConfig, tool_cmd: str | None) -> ToolServerConfig:
    if tool_cmd:
        return ToolServerConfig(command=shlex.split(tool_cmd))
    if cfg.tool_server is not None:
        return cfg.tool_server
    _fatal("No tool server configured. Pass --tool-cmd or add tool_server to pyaether.yaml.")


def _start(
    cfg: AppConfig,
    tool_cmd: str | None,
    permissions: Path | None,
    **kwargs,
) -> AppContext:
    server = _tool_server(cfg, tool_cmd)
    try:
        return AppContext.start(server, permissions or cfg.permissions_path, **kwargs)
    except AetherError as e:
        _fatal(str(e))


def _header(ctx: AppContext, extra: dict[str, str]) -> None:
    table = Table.grid(padding=(0, 2))
    table.add_row("[bold green]session[/bold green]", f"[bright_cyan]{ctx.session.session_id}[/bright_cyan]")
    table.add_row(
        "[bold green]tool server[/bold green]",
        f"[bright_cyan]{ctx.init.server_info.name} v{ctx.init.server_info.version}[/bright_cyan]",
    )
    table.add_row("[bold green]policy[/bold green]", f"[bright_cyan]default={ctx.policy.global_policy}, rules={len(ctx.policy.rules)}[/bright_cyan]")
    for k, v in extra.items():
        table.add_row(f"[bold green]{k}[/bold green]", f"[bright_cyan]{v}[/bright_cyan]")
    console.print(Align.center(Panel(table, title="[bold magenta]pyaether[/bold magenta]", border_style="bright_blue")))


@app.command()
def chat(
    provider: str = typer.Option(None, "--provider", help="Provider name registered in YAML (optional when only one is configured)."),
    model: str = typer.Option(None, "--model", help="Override the provider's model."),
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", help="YAML config path (default: ./pyaether.yaml)."),
    permissions: Path = typer.Option(None, "--permissions", help="Permission policy JSON (default: permissions.json)."),
    tool_cmd: str = typer.Option(None, "--tool-cmd", help="Tool server command line; overrides tool_server in YAML."),
    read_timeout: float = typer.Option(60.0, "--read-timeout", help="Seconds to wait for a tool server reply (0 = forever)."),
    persist: bool = typer.Option(True, "--persist/--no-persist", help="Save transcript and events under the user data dir."),
    trace: bool = typer.Option(True, "--trace/--no-trace", help="Show agent log lines (tool calls, results)."),
):
    """Start an interactive conversation with tool access."""
    cfg = _load_config(config, required=True)
    try:
        llm = resolve_provider(cfg.providers, provider, model)
    except AetherError as e:
        _fatal(str(e))

    ctx = _start(cfg, tool_cmd, permissions, provider=llm, persist=persist, read_timeout=read_timeout or None)
    try:
        _header(ctx, {"provider": llm.provider_name, "model": llm.model})

        inbox: Channel[str] = Channel()
        outbox: Channel[UiMessage] = Channel()
        agent = ctx.make_agent(inbox, outbox)
        display = ConsoleDisplay(inbox, outbox, console=console, show_logs=trace)
        display.start_renderer()

        if not agent.start():
            display.stop_renderer()
            raise typer.Exit(code=1)

        worker = threading.Thread(target=agent.run, name="pyaether-agent", daemon=True)
        worker.start()
        try:
            display.repl()
        finally:
            inbox.close()
            worker.join(timeout=5.0)
            display.stop_renderer()
    finally:
        ctx.close()


@app.command()
def tools(
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", help="YAML config path."),
    permissions: Path = typer.Option(None, "--permissions", help="Permission policy JSON."),
    tool_cmd: str = typer.Option(None, "--tool-cmd", help="Tool server command line."),
    read_timeout: float = typer.Option(30.0, "--read-timeout", help="Seconds to wait for a tool server reply."),
):
    """List the tools the server exposes and what the policy decides for each."""
    cfg = _load_config(config, required=False)
    ctx = _start(cfg, tool_cmd, permissions, persist=False, read_timeout=read_timeout or None)
    try:
        try:
            descriptors = ctx.client.list_tools()
        except AetherError as e:
            _fatal(f"Tool discovery failed: {e}")
        table = Table(title=f"{ctx.init.server_info.name} v{ctx.init.server_info.version}")
        table.add_column("tool", style="bold")
        table.add_column("policy")
        table.add_column("description")
        for t in descriptors:
            decision = ctx.policy.decide(t.name)
            color = "green" if decision == "allow" else "red"
            table.add_row(escape(t.name), f"[{color}]{decision}[/{color}]", escape(t.description or ""))
        console.print(table)
    finally:
        ctx.close()


@app.command()
def call(
    name: str = typer.Argument(..., help="Tool name."),
    args: str = typer.Option("{}", "--args", "-a", help="Tool arguments as a JSON object."),
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", help="YAML config path."),
    permissions: Path = typer.Option(None, "--permissions", help="Permission policy JSON."),
    tool_cmd: str = typer.Option(None, "--tool-cmd", help="Tool server command line."),
    read_timeout: float = typer.Option(30.0, "--read-timeout", help="Seconds to wait for a tool server reply."),
    raw: bool = typer.Option(False, "--raw", help="Print the raw result document instead of its text."),
):
    """Invoke one tool directly, through the permission gate (no model involved)."""
    try:
        arguments = json.loads(args)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--args is not valid JSON: {e}")
    if not isinstance(arguments, dict):
        raise typer.BadParameter("--args must be a JSON object.")

    cfg = _load_config(config, required=False)
    ctx = _start(cfg, tool_cmd, permissions, persist=False, read_timeout=read_timeout or None)
    try:
        try:
            result = ctx.client.call_tool(name, arguments)
        except PermissionDenied as e:
            console.print(f"[red]Denied[/red] {escape(str(e))}")
            raise typer.Exit(code=2)
        except AetherError as e:
            _fatal(str(e))
        if raw:
            console.print_json(json.dumps(result, ensure_ascii=False))
        else:
            console.print(result_text(result), markup=False)
    finally:
        ctx.close()


@app.command()
def replay(
    session: str = typer.Option(..., "--session", help="Session id to replay."),
    tail: int = typer.Option(50, "--tail", help="Show last N messages."),
    show_system: bool = typer.Option(False, "--show-system", help="Include system messages."),
):
    """Replay recent conversation messages from a saved session."""
    try:
        store = SessionStore.load(session)
    except FileNotFoundError as e:
        _fatal(str(e))
    msgs = list(store.messages)
    if not show_system:
        msgs = [m for m in msgs if m.role != Role.SYSTEM]
    msgs = msgs[-tail:] if tail and tail > 0 else msgs

    console.print(Panel.fit(f"session: {store.session_id}\nfile: {store.path}", title="Replay"))
    for m in msgs:
        title = m.role.value
        if m.role == Role.TOOL:
            title = f"tool ({m.tool_call_id})"
        body = m.content or ""
        if m.tool_calls:
            calls = "\n".join(f"-> {tc.name}({tc.arguments})" for tc in m.tool_calls)
            body = f"{body}\n{calls}".strip()
        console.print(Panel(Text(body), title=escape(title)))


@app.command()
def events(
    session: str = typer.Option(..., "--session", help="Session id to inspect events."),
    tail: int = typer.Option(200, "--tail", help="Show last N events."),
):
    """Show recent structured events (LLM calls, tool calls) recorded for a session."""
    es = EventStore.open(session)
    evs = list(es.iter_events())
    evs = evs[-tail:] if tail and tail > 0 else evs
    console.print(Panel.fit(f"session: {session}\nfile: {es.path}\nevents: {len(evs)}", title="Events"))
    for e in evs:
        ts = datetime.fromtimestamp(e.ts).strftime("%Y-%m-%d %H:%M:%S")
        console.print(Panel.fit(Text(json.dumps(e.data, ensure_ascii=False, indent=2)[:4000]), title=f"{ts}  {e.type}"))


if __name__ == "__main__":
    app()
