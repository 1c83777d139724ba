from __future__ import annotations

import threading
from typing import Callable

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from .channel import Channel
from .events import UiKind, UiMessage

EXIT_WORDS = {"exit", "quit"}


class ConsoleDisplay:
    """Terminal display surface.

    Reads user lines on the calling thread and renders agent events on a
    background thread. After each line it waits until the agent has finished
    the turn and every event of that turn has been printed.
    """

    def __init__(
        self,
        inbox: Channel[str],
        outbox: Channel[UiMessage],
        *,
        console: Console | None = None,
        show_logs: bool = True,
        input_fn: Callable[[], str] | None = None,
    ):
        self.inbox = inbox
        self.outbox = outbox
        self.console = console or Console()
        self.show_logs = show_logs
        self.history: list[UiMessage] = []
        self._input_fn = input_fn or (lambda: self.console.input("[bold cyan]You[/bold cyan]: "))
        self._renderer: threading.Thread | None = None

    def render(self, msg: UiMessage) -> None:
        self.history.append(msg)
        if msg.kind == UiKind.USER:
            self.console.print(f"[cyan]YOU:[/cyan] {escape(msg.text)}")
        elif msg.kind == UiKind.AI:
            self.console.print(Panel(Markdown(msg.text), title="AI", border_style="green"))
        elif msg.kind == UiKind.ERROR:
            self.console.print(f"[bold red]ERROR:[/bold red] {escape(msg.text)}", highlight=False)
        elif self.show_logs:
            self.console.print(f"[dim]{escape(msg.text)}[/dim]", highlight=False)

    def pump(self) -> None:
        """Render events until the outbound channel is closed."""
        while True:
            msg = self.outbox.recv()
            if msg is None:
                return
            try:
                self.render(msg)
            except Exception as e:  # a bad message must not stop the renderer
                self.console.print(Text(f"(render failed: {type(e).__name__}) {msg.text}", style="red"))
            finally:
                self.outbox.task_done()

    def start_renderer(self) -> None:
        if self._renderer is None:
            self._renderer = threading.Thread(target=self.pump, daemon=True)
            self._renderer.start()

    def stop_renderer(self, timeout: float = 2.0) -> None:
        self.outbox.close()
        if self._renderer is not None:
            self._renderer.join(timeout=timeout)

    def repl(self) -> None:
        self.start_renderer()
        # flush startup events before the first prompt
        self.outbox.join()
        try:
            while True:
                try:
                    line = self._input_fn()
                except (EOFError, KeyboardInterrupt):
                    break
                text = line.strip()
                if not text:
                    continue
                if text.lower() in EXIT_WORDS:
                    break
                self.history.append(UiMessage.user(text))
                if not self.inbox.send(text):
                    self.console.print("[red]Agent is not running.[/red]")
                    break
                self.inbox.join()
                self.outbox.join()
        finally:
            self.inbox.close()
