"""
PyAV backend against a clip encoded on the fly (no media fixtures on disk).
"""

from __future__ import annotations

import av
import numpy as np
import pytest

from gopcache.adapters.byte_source import PreloadedByteSource
from gopcache.adapters.pyav_backend import PyAVBackend
from gopcache.infra.exceptions import GopCacheError
from gopcache.runtime.config import DecoderConfig
from gopcache.runtime.gop_indexer import index_media

FPS = 25


@pytest.fixture(scope="module")
def clip(tmp_path_factory) -> bytes:
    path = tmp_path_factory.mktemp("media") / "clip.mp4"
    container = av.open(str(path), mode="w")
    stream = container.add_stream("mpeg4", rate=FPS)
    stream.width = 64
    stream.height = 48
    stream.pix_fmt = "yuv420p"
    stream.codec_context.gop_size = FPS
    for i in range(2 * FPS):
        # small square drifting across a flat background: no scene cuts
        image = np.zeros((48, 64, 3), dtype=np.uint8)
        image[20:28, i : i + 8] = 255
        frame = av.VideoFrame.from_ndarray(image, format="rgb24")
        for packet in stream.encode(frame):
            container.mux(packet)
    for packet in stream.encode():
        container.mux(packet)
    container.close()
    return path.read_bytes()


class TestPyAVBackend:
    @pytest.fixture(autouse=True)
    def _open(self, clip):
        self.source = PyAVBackend().open(PreloadedByteSource("memory://clip.mp4", clip))
        yield
        self.source.close()

    def test_probe(self):
        probe = self.source.probe()
        assert probe.video is not None
        assert probe.audio is None
        assert probe.video.codec == "mpeg4"
        assert (probe.video.display_width, probe.video.display_height) == (64, 48)
        assert probe.duration == pytest.approx(2000, abs=100)

    def test_keyframes_and_index(self):
        keyframes = self.source.keyframe_packets()
        assert len(keyframes) >= 2
        assert keyframes[0].timestamp == pytest.approx(0, abs=1)
        gops = index_media(self.source, self.source.probe(), DecoderConfig())
        assert len(gops) == len(keyframes)
        assert gops[1].timestamp == pytest.approx(1000, abs=50)

    def test_decode_video_range(self):
        frames = self.source.decode_video_range(0, 1000)
        try:
            assert len(frames) == pytest.approx(FPS, abs=1)
            assert all(0 <= f.timestamp < 1000 for f in frames)
            assert [f.timestamp for f in frames] == sorted(f.timestamp for f in frames)
            assert frames[0].frame.width == 64
        finally:
            for f in frames:
                f.close()
        assert all(f.closed for f in frames)

    def test_closed_source_refuses_work(self):
        self.source.close()
        with pytest.raises(GopCacheError):
            self.source.probe()
