"""
Decode scheduler: the per-consumer playback window.

A DecodeScheduler follows one playback cursor over one URL. On every
set_time(t) it computes which GOPs should be resident (the active GOP, the
look-ahead window of ``decode_next_duration`` and the look-behind window of
``release_prev_duration``) and sends DECODE / RELEASE requests for the
difference against what it already holds. It never touches shared state
directly; the execution context applies the requests.

Holding is tracked locally so that repeated set_time calls with the same
cursor send nothing.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import TYPE_CHECKING

from gopcache.infra.exceptions import ContextClosedError, GopCacheError
from gopcache.runtime.config import DecoderConfig
from gopcache.runtime.lookup import frame_at_time, nearest_preceding_gop
from gopcache.runtime.media_types import AudioBuffer, GOPDescriptor, GOPState, MediaMeta, VideoFrameHandle
from gopcache.runtime.messages import DecoderRequest, RequestType
from gopcache.runtime.notifications import Notification, NotificationChannel, NotificationKind

if TYPE_CHECKING:
    from gopcache.runtime.execution_context import DecodeExecutionContext
    from gopcache.runtime.gop_state import GOPDecodeState

_consumer_ids = itertools.count(1)
_consumer_ids_lock = threading.Lock()


def _next_consumer_id() -> int:
    with _consumer_ids_lock:
        return next(_consumer_ids)


class DecodeScheduler:
    """Windowed decode policy for one consumer of one media URL."""

    def __init__(
        self,
        url: str,
        context: DecodeExecutionContext,
        config: DecoderConfig | None = None,
    ) -> None:
        self.url = url
        self.consumer_id = _next_consumer_id()
        self.config = config or context.config
        self.channel = NotificationChannel()
        self.current_time: float | None = None
        self.active_gop_index = -1
        self._context = context
        self._meta: MediaMeta | None = None
        self._gops: tuple[GOPDescriptor, ...] = ()
        self._gop_states: tuple[GOPDecodeState, ...] = ()
        self._held: set[int] = set()
        self._pending: list[Notification] = []
        self._error: GopCacheError | None = None
        self._attached = False
        self._released = False
        self._lock = threading.RLock()
        self._logger = logging.getLogger(__name__)

    # ---- read-only views --------------------------------------------------

    @property
    def meta(self) -> MediaMeta | None:
        return self._meta

    @property
    def gops(self) -> tuple[GOPDescriptor, ...]:
        return self._gops

    @property
    def error(self) -> GopCacheError | None:
        """File-level failure, if metadata could not be loaded."""
        return self._error

    @property
    def held_gops(self) -> frozenset[int]:
        return frozenset(self._held)

    @property
    def released(self) -> bool:
        return self._released

    @property
    def current_gop(self) -> GOPDecodeState | None:
        """Decode state of the active GOP, or None outside the track."""
        if 0 <= self.active_gop_index < len(self._gop_states):
            return self._gop_states[self.active_gop_index]
        return None

    # ---- requests ---------------------------------------------------------

    def _send(self, kind: RequestType, index: int | None = None) -> int:
        message_id = self._context.next_message_id()
        self._context.submit(
            DecoderRequest(
                kind=kind,
                url=self.url,
                consumer_id=self.consumer_id,
                message_id=message_id,
                index=index,
                consumer=self if kind is RequestType.META else None,
            )
        )
        return message_id

    def _acquire(self, index: int) -> None:
        if index in self._held:
            return
        self._held.add(index)
        self._send(RequestType.DECODE, index)

    def _release(self, index: int) -> None:
        if index not in self._held:
            return
        self._held.discard(index)
        self._send(RequestType.RELEASE, index)

    def _release_all(self) -> None:
        for index in sorted(self._held):
            self._release(index)

    # ---- window -----------------------------------------------------------

    def _process(self, t: float) -> None:
        gops = self._gops
        if self._meta is None or not gops:
            return
        lookahead = self.config.decode_next_duration
        lookbehind = self.config.release_prev_duration

        if t < gops[0].timestamp - lookahead or t > self._meta.duration + lookahead:
            self._release_all()
            self.active_gop_index = -1
            return

        active = nearest_preceding_gop(gops, t)
        self.active_gop_index = active
        self._acquire(active)
        for i in range(active):
            if gops[i].end < t - lookbehind:
                self._release(i)
        for i in range(active + 1, len(gops)):
            if gops[i].timestamp < t + lookahead:
                self._acquire(i)
            else:
                self._release(i)

    def _absorb(self) -> bool:
        """Apply notification side effects. Returns True if metadata just arrived."""
        got_meta = False
        for notification in self.channel.drain():
            if notification.kind is NotificationKind.META and self._meta is None:
                self._meta = notification.meta
                self._gops = notification.gops
                self._gop_states = notification.gop_states
                got_meta = True
            elif notification.is_error and notification.gop_index is None:
                self._error = notification.error
                self._logger.warning("%s: consumer %d failed: %s", self.url, self.consumer_id, notification.reason)
            self._pending.append(notification)
        return got_meta

    def set_time(self, t: float) -> None:
        """Move the playback cursor to ``t`` ms and adjust the resident window."""
        with self._lock:
            if self._released:
                raise GopCacheError(f"Scheduler {self.consumer_id} for {self.url} is released")
            self.current_time = t
            self._absorb()
            if not self._attached:
                self._attached = True
                self._send(RequestType.META)
                # Colocated contexts answer inline
                self._absorb()
            if self._error is None:
                self._process(t)

    def poll_notifications(self) -> list[Notification]:
        """Notifications received since the last poll, in arrival order."""
        with self._lock:
            if self._absorb() and self.current_time is not None and not self._released and self._error is None:
                self._process(self.current_time)
            pending, self._pending = self._pending, []
            return pending

    # ---- lookup -----------------------------------------------------------

    def get_frame_by_time(self, t: float) -> VideoFrameHandle | None:
        """Frame handle showing at ``t``, if its GOP is decoded. Not retained."""
        meta, gops, states = self._meta, self._gops, self._gop_states
        if meta is None or not gops or t < 0 or t > meta.duration + self.config.frame_epsilon:
            return None
        index = nearest_preceding_gop(gops, t)
        gop = states[index]
        if gop.state is not GOPState.DECODED:
            return None
        return frame_at_time(gop.video_frames, t)

    def get_audio_buffer(self, index: int) -> AudioBuffer | None:
        """Audio of GOP ``index`` if it is decoded and carries audio."""
        if 0 <= index < len(self._gop_states):
            gop = self._gop_states[index]
            if gop.state is GOPState.DECODED:
                return gop.audio_buffer
        return None

    # ---- teardown ---------------------------------------------------------

    def release(self) -> None:
        """Release every held GOP and detach from the shared cache. Idempotent."""
        with self._lock:
            if self._released:
                return
            self._released = True
            try:
                self._release_all()
                if self._attached:
                    self._send(RequestType.DETACH)
            except ContextClosedError:
                # A stopped context has already torn its caches down
                self._held.clear()
            self.active_gop_index = -1
            self.channel.close()
            self.channel.drain()

    def __enter__(self) -> DecodeScheduler:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()

    def __repr__(self) -> str:
        return (
            f"<DecodeScheduler id={self.consumer_id} url={self.url!r} "
            f"active={self.active_gop_index} held={sorted(self._held)}>"
        )
