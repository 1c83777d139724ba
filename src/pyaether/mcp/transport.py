from __future__ import annotations

import os
import queue
import subprocess
import threading
from collections import deque
from typing import Sequence

from ..errors import TransportClosed, TransportIOError, TransportTimeout
from .protocol import JsonRpcRequest

_EOF = object()


class ChildProcessTransport:
    """Owns one tool process and its stdio pipes.

    Messages are newline-delimited JSON documents. Reads happen on a
    background thread so that ``receive_line`` can honour a timeout; stderr is
    drained on a second thread into a small tail buffer so the child never
    blocks on a full pipe.

    Not safe for concurrent callers: one request is in flight at a time.
    """

    STDERR_TAIL = 50

    def __init__(self, proc: subprocess.Popen, *, read_timeout: float | None = None):
        if proc.stdin is None or proc.stdout is None or proc.stderr is None:
            raise TransportIOError("Tool process was started without pipes.")
        self._proc = proc
        self._stdin = proc.stdin
        self._stdout = proc.stdout
        self._stderr = proc.stderr
        self.read_timeout = read_timeout
        self.send_count = 0
        self._lines: queue.Queue = queue.Queue()
        self._eof = False
        self._closed = False
        self.stderr_tail: deque[str] = deque(maxlen=self.STDERR_TAIL)
        self._reader = threading.Thread(target=self._read_loop, daemon=True)
        self._reader.start()
        self._stderr_reader = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_reader.start()

    @classmethod
    def start(
        cls,
        command: Sequence[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        read_timeout: float | None = None,
    ) -> "ChildProcessTransport":
        if not command:
            raise TransportIOError("Empty tool command.")
        try:
            proc = subprocess.Popen(
                list(command),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                cwd=cwd,
                env={**os.environ, **env} if env else None,
            )
        except OSError as e:
            raise TransportIOError(f"Failed to spawn tool process {list(command)!r}: {e}") from e
        return cls(proc, read_timeout=read_timeout)

    def _read_loop(self) -> None:
        try:
            for line in self._stdout:
                self._lines.put(line)
        except (OSError, ValueError):
            # pipe torn down by close()
            pass
        finally:
            self._lines.put(_EOF)

    def _drain_stderr(self) -> None:
        try:
            for line in self._stderr:
                self.stderr_tail.append(line.rstrip("\n"))
        except (OSError, ValueError):
            pass

    def send(self, request: JsonRpcRequest) -> None:
        if self._closed:
            raise TransportIOError("Transport is closed.")
        data = request.encode() + "\n"
        try:
            self._stdin.write(data)
            self._stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as e:
            raise TransportIOError(f"Failed to write to tool process: {e}") from e
        self.send_count += 1

    def receive_line(self, timeout: float | None = None) -> str:
        """Block until the tool process produces one full line; return it without the newline."""
        if timeout is None:
            timeout = self.read_timeout
        while True:
            if self._eof:
                raise TransportClosed(self._closed_message())
            try:
                item = self._lines.get(timeout=timeout)
            except queue.Empty:
                raise TransportTimeout(f"No response from tool process within {timeout}s.") from None
            if item is _EOF:
                self._eof = True
                continue
            line = item.rstrip("\r\n")
            if not line.strip():
                continue
            if not item.endswith("\n"):
                # partial trailing line: the stream ended before the terminator
                self._eof = True
                continue
            return line

    def _closed_message(self) -> str:
        msg = "Tool process closed the connection (EOF)."
        tail = [s for s in list(self.stderr_tail)[-5:] if s.strip()]
        if tail:
            msg += " stderr: " + " | ".join(tail)
        return msg

    def close(self, grace: float = 2.0) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._stdin.close()
        except OSError:
            pass
        if self._proc.poll() is None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                self._proc.kill()
                self._proc.wait()
        for reader, stream in ((self._reader, self._stdout), (self._stderr_reader, self._stderr)):
            reader.join(timeout=1.0)
            # a grandchild may still hold the pipe open; leave it to the daemon thread
            if reader.is_alive():
                continue
            try:
                stream.close()
            except OSError:
                pass

    def __enter__(self) -> "ChildProcessTransport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
