"""
Tests for GOP indexing: keyframe spans, minimum-duration merging, audio-only
partitioning and audio edge alignment.
"""

from __future__ import annotations

import pytest

from gopcache.infra.exceptions import MetaLoadError
from gopcache.runtime.config import DecoderConfig
from gopcache.runtime.gop_indexer import build_audio_gop_index, build_gop_index, index_media
from gopcache.runtime.media_types import AudioTrackInfo, KeyframePacket, MediaProbe
from tests.util.fakes import VIDEO_TRACK, FakeMediaSource


def _keyframes(*timestamps: float) -> list[KeyframePacket]:
    return [KeyframePacket(ts, 33.0, i * 30) for i, ts in enumerate(timestamps)]


def _spans(gops) -> list[tuple[float, float]]:
    return [(g.timestamp, g.end) for g in gops]


class TestBuildGopIndex:
    def test_one_gop_per_keyframe(self):
        gops = build_gop_index(_keyframes(0, 2000, 4000), total_duration=5000)
        assert _spans(gops) == [(0, 2000), (2000, 4000), (4000, 5000)]
        assert [g.index for g in gops] == [0, 1, 2]
        assert [g.sequence_number for g in gops] == [0, 30, 60]

    def test_short_gop_is_folded_into_predecessor(self):
        gops = build_gop_index(_keyframes(0, 1000, 1800, 5000), total_duration=6000, gop_min_duration=1000)
        assert _spans(gops) == [(0, 1800), (1800, 5000), (5000, 6000)]

    def test_first_gop_absorbs_close_keyframe(self):
        gops = build_gop_index(_keyframes(0, 300, 2000), total_duration=3000, gop_min_duration=1000)
        assert _spans(gops) == [(0, 2000), (2000, 3000)]

    def test_no_merging_without_minimum(self):
        gops = build_gop_index(_keyframes(0, 100, 200), total_duration=300)
        assert len(gops) == 3

    def test_last_gop_backfilled_from_duration(self):
        gops = build_gop_index(_keyframes(0, 1000), total_duration=1750)
        assert gops[-1].duration == 750

    def test_last_gop_duration_never_negative(self):
        gops = build_gop_index(_keyframes(0, 1000), total_duration=900)
        assert gops[-1].duration == 0

    def test_duplicate_and_out_of_order_keyframes_skipped(self):
        packets = [KeyframePacket(0, 33, 0), KeyframePacket(1000, 33, 1), KeyframePacket(1000, 33, 2), KeyframePacket(500, 33, 3)]
        gops = build_gop_index(packets, total_duration=2000)
        assert _spans(gops) == [(0, 1000), (1000, 2000)]

    def test_index_is_dense_and_contiguous(self):
        gops = build_gop_index(_keyframes(0, 400, 900, 1700, 2100, 4000), total_duration=5000, gop_min_duration=500)
        assert [g.index for g in gops] == list(range(len(gops)))
        for prev, cur in zip(gops, gops[1:]):
            assert prev.end == cur.timestamp
            assert prev.timestamp < cur.timestamp
        # every GOP but the last meets the minimum
        assert all(g.duration >= 500 for g in gops[:-1])

    def test_empty_input(self):
        assert build_gop_index([], total_duration=1000) == []


class TestBuildAudioGopIndex:
    def _packets(self, count: int, interval: float = 100.0) -> list[KeyframePacket]:
        return [KeyframePacket(i * interval, interval, i) for i in range(count)]

    def test_fixed_segments(self):
        gops = build_audio_gop_index(self._packets(120), total_duration=12000, segment_duration=5000)
        assert _spans(gops) == [(0, 5000), (5000, 10000), (10000, 12000)]
        assert [g.sequence_number for g in gops] == [0, 50, 100]

    def test_rejects_non_positive_segment(self):
        with pytest.raises(ValueError):
            build_audio_gop_index(self._packets(10), total_duration=1000, segment_duration=0)


class TestIndexMedia:
    def test_video_with_audio_edges_aligned(self):
        source = FakeMediaSource([100, 2000, 4000], duration=5000)
        probe = MediaProbe(
            duration=5000,
            video=VIDEO_TRACK,
            audio=AudioTrackInfo(id=1, codec="aac", number_of_channels=2, sample_rate=48000, timestamp=0, duration=5300),
        )
        gops = index_media(source, probe, DecoderConfig())
        first, middle, last = gops
        assert (first.audio_timestamp, first.audio_duration) == (0, 2000)
        assert (middle.audio_timestamp, middle.audio_duration) == (2000, 2000)
        assert (last.audio_timestamp, last.audio_duration) == (4000, 1300)
        assert (last.timestamp, last.duration) == (4000, 1000)

    def test_audio_only_uses_gop_min_duration(self):
        source = FakeMediaSource([], duration=3000, has_video=False, audio=True)
        probe = source.probe()
        gops = index_media(source, probe, DecoderConfig(gop_min_duration=1000))
        assert _spans(gops) == [(0, 1000), (1000, 2000), (2000, 3000)]

    def test_audio_only_falls_back_to_segment_duration(self):
        source = FakeMediaSource([], duration=12000, has_video=False, audio=True)
        gops = index_media(source, source.probe(), DecoderConfig(audio_segment_duration=5000))
        assert len(gops) == 3

    def test_no_tracks_is_a_meta_error(self):
        source = FakeMediaSource([], duration=1000, has_video=False)
        with pytest.raises(MetaLoadError):
            index_media(source, source.probe(), DecoderConfig())

    def test_no_keyframes_is_a_meta_error(self):
        source = FakeMediaSource([], duration=1000)
        with pytest.raises(MetaLoadError):
            index_media(source, source.probe(), DecoderConfig())
