"""
Threaded execution context: the same protocol driven from a separate
context thread with a real worker pool.
"""

from __future__ import annotations

import threading
import time

from gopcache.runtime.config import DecoderConfig
from gopcache.runtime.execution_context import DecodeExecutionContext
from gopcache.runtime.notifications import NotificationKind
from gopcache.runtime.scheduler import DecodeScheduler
from tests.conftest import MEDIA_URL
from tests.util.fakes import FakeMediaBackend, FakeMediaSource, FrameLedger, InMemoryFetcher


def _wait_for(scheduler: DecodeScheduler, gop_indexes: set[int], timeout: float = 5.0) -> list:
    seen = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        seen.extend(scheduler.poll_notifications())
        if gop_indexes <= {n.gop_index for n in seen if n.kind is NotificationKind.CANPLAY}:
            return seen
        time.sleep(0.01)
    raise AssertionError(f"GOPs {gop_indexes} never became playable: {seen}")


class TestThreadedContext:
    def setup_method(self):
        self.ledger = FrameLedger()
        self.source = FakeMediaSource([0, 1000, 2000], duration=3000, ledger=self.ledger)
        self.context = DecodeExecutionContext(
            FakeMediaBackend(self.source),
            InMemoryFetcher({MEDIA_URL: b"\x00" * 16}),
            DecoderConfig(decode_debounce=10, decode_next_duration=1500, decode_workers=2),
        )
        self.context.start()

    def teardown_method(self):
        self.context.stop()

    def test_playback_over_worker_thread(self):
        scheduler = DecodeScheduler(MEDIA_URL, self.context)
        scheduler.set_time(0)
        seen = _wait_for(scheduler, {0, 1})
        assert seen[0].kind is NotificationKind.META
        assert scheduler.held_gops == {0, 1}
        assert scheduler.get_frame_by_time(550).timestamp == 500
        assert self.context.snapshot()["mode"] == "threaded"

        scheduler.release()
        self.context.stop()
        assert self.ledger.frames
        assert self.ledger.open_frames == []
        assert self.ledger.over_closed == []

    def test_stop_is_idempotent(self):
        self.context.stop()
        self.context.stop()
        assert self.context.closed


class _StuckSource(FakeMediaSource):
    """Video decode blocks until the test lets it go."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.entered = threading.Event()
        self.proceed = threading.Event()

    def decode_video_range(self, start, end):
        self.entered.set()
        self.proceed.wait(10)
        return super().decode_video_range(start, end)


class TestStopWithStuckDecode:
    def test_stop_does_not_wait_for_running_decode(self):
        ledger = FrameLedger()
        source = _StuckSource([0, 1000], duration=2000, ledger=ledger)
        context = DecodeExecutionContext(
            FakeMediaBackend(source),
            InMemoryFetcher({MEDIA_URL: b"\x00" * 16}),
            DecoderConfig(decode_debounce=0, decode_workers=1),
        )
        context.start()
        scheduler = DecodeScheduler(MEDIA_URL, context)
        scheduler.set_time(0)
        deadline = time.monotonic() + 5
        while not source.entered.is_set() and time.monotonic() < deadline:
            scheduler.poll_notifications()
            time.sleep(0.01)
        assert source.entered.is_set()

        started = time.monotonic()
        context.stop(timeout=1.0)
        assert time.monotonic() - started < 2.0

        source.proceed.set()
        deadline = time.monotonic() + 5
        while (not ledger.frames or ledger.open_frames) and time.monotonic() < deadline:
            time.sleep(0.01)
        assert ledger.frames
        assert ledger.open_frames == []
