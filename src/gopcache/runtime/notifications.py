"""
Notifications from the execution context back to a decode scheduler.

Each scheduler owns one NotificationChannel. The context is the only writer;
the scheduler drains it on its own thread. Order is FIFO per channel.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from gopcache.infra.exceptions import GopCacheError
from gopcache.runtime.media_types import GOPDescriptor, MediaMeta

if TYPE_CHECKING:
    from gopcache.runtime.gop_state import GOPDecodeState


class NotificationKind(Enum):
    META = "meta"
    ERROR = "error"
    CANPLAY = "canplay"
    AUDIO_BUFFER = "audio_buffer"


@dataclass(frozen=True)
class Notification:
    """One message delivered to a scheduler.

    ``message_id`` echoes the id of the request that caused it, so callers can
    correlate responses. ``gop_index`` is None for file-level notifications.
    """

    kind: NotificationKind
    url: str
    consumer_id: int
    message_id: int | None = None
    gop_index: int | None = None
    meta: MediaMeta | None = None
    gops: tuple[GOPDescriptor, ...] = ()
    gop_states: tuple["GOPDecodeState", ...] = ()
    error: GopCacheError | None = None
    reason: str | None = None

    @property
    def is_error(self) -> bool:
        return self.kind is NotificationKind.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "url": self.url,
            "consumer_id": self.consumer_id,
            "message_id": self.message_id,
            "gop_index": self.gop_index,
            "reason": self.reason,
        }


class NotificationChannel:
    """Unbounded FIFO queue of notifications. Writes after close() are dropped."""

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[Notification] = queue.SimpleQueue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def put(self, notification: Notification) -> bool:
        if self._closed.is_set():
            return False
        self._queue.put(notification)
        return True

    def drain(self) -> list[Notification]:
        out: list[Notification] = []
        while True:
            try:
                out.append(self._queue.get_nowait())
            except queue.Empty:
                return out

    def close(self) -> None:
        self._closed.set()

    def __len__(self) -> int:
        return self._queue.qsize()
