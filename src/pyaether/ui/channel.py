from __future__ import annotations

import queue
from typing import Generic, TypeVar

T = TypeVar("T")

_CLOSED = object()


class Channel(Generic[T]):
    """One-directional, unbounded, ordered message channel between two threads.

    ``send`` never blocks and never raises: after ``close()`` messages are
    dropped and ``send`` returns False. ``recv`` returns None once the channel
    is closed and drained.
    """

    def __init__(self) -> None:
        self._q: queue.Queue = queue.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, item: T) -> bool:
        if self._closed:
            return False
        self._q.put(item)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._q.put(_CLOSED)

    def recv(self, timeout: float | None = None) -> T | None:
        """Next message; None when closed. Raises queue.Empty on timeout."""
        if self._closed and self._q.empty():
            return None
        item = self._q.get(timeout=timeout)
        if item is _CLOSED:
            self._q.task_done()
            return None
        return item

    def try_recv(self) -> T | None:
        try:
            if self._closed and self._q.empty():
                return None
            item = self._q.get_nowait()
        except queue.Empty:
            return None
        if item is _CLOSED:
            self._q.task_done()
            return None
        return item

    def task_done(self) -> None:
        self._q.task_done()

    def join(self) -> None:
        """Block until every received message has been marked done."""
        self._q.join()
