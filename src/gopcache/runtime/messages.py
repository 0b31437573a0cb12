"""
Request messages and the execution context mailbox.

Schedulers talk to the execution context only through DecoderRequest values.
The mailbox also carries the context's own internal messages (debounce
timers, job completions) so that every state change happens on one thread.
"""

from __future__ import annotations

import heapq
import itertools
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Protocol

if TYPE_CHECKING:
    from gopcache.runtime.notifications import NotificationChannel


class RequestType(Enum):
    META = "meta"
    DECODE = "decode"
    RELEASE = "release"
    DETACH = "detach"


@dataclass(frozen=True)
class DecoderRequest:
    """A scheduler-to-context request.

    META carries the requesting consumer so the context can register it;
    DECODE and RELEASE carry the GOP index.
    """

    kind: RequestType
    url: str
    consumer_id: int
    message_id: int
    index: int | None = None
    consumer: "Consumer | None" = field(default=None, compare=False, repr=False)


class Consumer(Protocol):
    """What the context needs to know about a scheduler."""

    consumer_id: int
    channel: "NotificationChannel"
    active_gop_index: int


class Mailbox:
    """Thread-safe FIFO plus a timer heap keyed by clock milliseconds."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._ready: deque[Any] = deque()
        self._timers: list[tuple[float, int, Any]] = []
        self._seq = itertools.count()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, message: Any) -> bool:
        with self._cond:
            if self._closed:
                return False
            self._ready.append(message)
            self._cond.notify()
            return True

    def post_at(self, due_ms: float, message: Any) -> bool:
        with self._cond:
            if self._closed:
                return False
            heapq.heappush(self._timers, (due_ms, next(self._seq), message))
            self._cond.notify()
            return True

    def _pop_locked(self, now_ms: float) -> Any | None:
        if self._ready:
            return self._ready.popleft()
        if self._timers and self._timers[0][0] <= now_ms:
            return heapq.heappop(self._timers)[2]
        return None

    def pop_ready(self, now_ms: float) -> Any | None:
        """Next message that is deliverable at ``now_ms``, without blocking."""
        with self._cond:
            return self._pop_locked(now_ms)

    def get(self, now_fn: Callable[[], float]) -> Any | None:
        """Block until a message is deliverable. Returns None once closed."""
        with self._cond:
            while not self._closed:
                now = now_fn()
                message = self._pop_locked(now)
                if message is not None:
                    return message
                timeout = None
                if self._timers:
                    timeout = max(0.0, (self._timers[0][0] - now) / 1000.0)
                self._cond.wait(timeout)
            return None

    def pending(self) -> int:
        with self._cond:
            return len(self._ready) + len(self._timers)

    def close(self) -> list[Any]:
        """Close the mailbox and hand back whatever was still queued."""
        with self._cond:
            self._closed = True
            leftover = list(self._ready) + [entry[2] for entry in self._timers]
            self._ready.clear()
            self._timers.clear()
            self._cond.notify_all()
            return leftover
