from __future__ import annotations

from gopcache.runtime.gop_indexer import build_gop_index
from gopcache.runtime.lookup import frame_at_time, nearest_preceding_gop
from gopcache.runtime.media_types import KeyframePacket
from tests.util.fakes import FakeFrame


def _gops(*timestamps: float, total: float):
    return build_gop_index([KeyframePacket(ts, 33, i) for i, ts in enumerate(timestamps)], total)


class TestNearestPrecedingGop:
    def setup_method(self):
        self.gops = _gops(0, 1000, 2000, 3000, total=4000)

    def test_empty(self):
        assert nearest_preceding_gop([], 10) is None

    def test_single_gop(self):
        assert nearest_preceding_gop(_gops(0, total=500), 9999) == 0

    def test_inside_and_on_boundaries(self):
        assert nearest_preceding_gop(self.gops, 0) == 0
        assert nearest_preceding_gop(self.gops, 999.9) == 0
        assert nearest_preceding_gop(self.gops, 1000) == 1
        assert nearest_preceding_gop(self.gops, 2500) == 2

    def test_negative_time_maps_to_first(self):
        assert nearest_preceding_gop(self.gops, -200) == 0

    def test_past_end_maps_to_last(self):
        assert nearest_preceding_gop(self.gops, 10_000) == 3

    def test_before_first_keyframe_maps_to_first(self):
        gops = _gops(500, 1500, total=3000)
        assert nearest_preceding_gop(gops, 200) == 0

    def test_monotonic(self):
        previous = 0
        for t in range(-100, 4500, 37):
            index = nearest_preceding_gop(self.gops, t)
            assert index >= previous
            previous = index


class TestFrameAtTime:
    def setup_method(self):
        self.frames = [FakeFrame(ts, 40) for ts in (0, 40, 80, 120)]

    def test_empty(self):
        assert frame_at_time([], 10) is None

    def test_frame_containing_time(self):
        assert frame_at_time(self.frames, 41).timestamp == 40
        assert frame_at_time(self.frames, 80).timestamp == 80

    def test_before_first_frame(self):
        assert frame_at_time(self.frames, -5).timestamp == 0

    def test_after_last_frame(self):
        assert frame_at_time(self.frames, 999).timestamp == 120
