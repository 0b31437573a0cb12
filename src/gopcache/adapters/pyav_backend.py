"""
PyAV media backend.

Every scan and every decode opens its own container over a fresh
ByteSourceReader so that decode jobs for different GOPs can run on different
worker threads at the same time.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from fractions import Fraction
from typing import Any, Iterator

import av

from gopcache.adapters.base import ByteSource
from gopcache.adapters.byte_source import ByteSourceReader
from gopcache.infra.exceptions import GopCacheError
from gopcache.runtime.media_types import (
    AudioChunk,
    AudioTrackInfo,
    DecodedVideoFrame,
    KeyframePacket,
    MediaProbe,
    VideoTrackInfo,
)

_logger = logging.getLogger(__name__)


def _to_ms(value: int | None, time_base: Fraction | None) -> float | None:
    if value is None or time_base is None:
        return None
    return float(value * time_base) * 1000.0


def _rotation(stream: Any) -> int:
    try:
        return int(stream.metadata.get("rotate", 0)) % 360
    except (TypeError, ValueError):
        return 0


class PyAVMediaSource:
    """MediaSource over one ByteSource."""

    def __init__(self, source: ByteSource) -> None:
        self._source = source
        self._closed = threading.Event()

    @contextmanager
    def _open(self) -> Iterator[Any]:
        if self._closed.is_set():
            raise GopCacheError(f"Media source for {self._source.url} is closed")
        container = av.open(ByteSourceReader(self._source), mode="r")
        try:
            yield container
        finally:
            container.close()

    def probe(self) -> MediaProbe:
        with self._open() as container:
            video = audio = None
            if container.streams.video:
                video = self._video_info(container.streams.video[0])
            if container.streams.audio:
                audio = self._audio_info(container.streams.audio[0])
            if container.duration is not None:
                # container duration is in AV_TIME_BASE (microseconds)
                duration = container.duration / 1000.0
            else:
                duration = max(
                    (t.timestamp + t.duration for t in (video, audio) if t is not None),
                    default=0.0,
                )
        return MediaProbe(duration=duration, video=video, audio=audio)

    @staticmethod
    def _video_info(stream: Any) -> VideoTrackInfo:
        ctx = stream.codec_context
        tb = stream.time_base
        rotation = _rotation(stream)
        width, height = ctx.width, ctx.height
        display_width, display_height = (height, width) if rotation in (90, 270) else (width, height)
        return VideoTrackInfo(
            id=stream.index,
            codec=ctx.name,
            coded_width=ctx.coded_width or width,
            coded_height=ctx.coded_height or height,
            display_width=display_width,
            display_height=display_height,
            rotation=rotation,
            time_resolution=tb.denominator if tb is not None else 0,
            language_code=stream.metadata.get("language"),
            name=stream.metadata.get("handler_name"),
            timestamp=_to_ms(stream.start_time, tb) or 0.0,
            duration=_to_ms(stream.duration, tb) or 0.0,
        )

    @staticmethod
    def _audio_info(stream: Any) -> AudioTrackInfo:
        ctx = stream.codec_context
        tb = stream.time_base
        return AudioTrackInfo(
            id=stream.index,
            codec=ctx.name,
            number_of_channels=len(ctx.layout.channels),
            sample_rate=ctx.sample_rate,
            language_code=stream.metadata.get("language"),
            name=stream.metadata.get("handler_name"),
            timestamp=_to_ms(stream.start_time, tb) or 0.0,
            duration=_to_ms(stream.duration, tb) or 0.0,
        )

    def _packets(self, kind: str, keyframes_only: bool) -> list[KeyframePacket]:
        packets: list[KeyframePacket] = []
        with self._open() as container:
            streams = getattr(container.streams, kind)
            if not streams:
                return packets
            stream = streams[0]
            tb = stream.time_base
            for sequence, packet in enumerate(container.demux(stream)):
                # demux() ends with an empty flush packet
                if packet.pts is None or packet.size == 0:
                    continue
                if keyframes_only and not packet.is_keyframe:
                    continue
                packets.append(
                    KeyframePacket(
                        timestamp=_to_ms(packet.pts, tb),
                        duration=_to_ms(packet.duration, tb) or 0.0,
                        sequence_number=sequence,
                    )
                )
        return packets

    def keyframe_packets(self) -> list[KeyframePacket]:
        return self._packets("video", keyframes_only=True)

    def audio_packets(self) -> list[KeyframePacket]:
        return self._packets("audio", keyframes_only=False)

    @staticmethod
    def _seek(container: Any, stream: Any, start: float) -> None:
        target = int(start / 1000.0 / stream.time_base)
        container.seek(max(0, target), stream=stream, backward=True, any_frame=False)

    def decode_video_range(self, start: float, end: float) -> list[DecodedVideoFrame]:
        frames: list[DecodedVideoFrame] = []
        with self._open() as container:
            stream = container.streams.video[0]
            stream.thread_type = "AUTO"
            tb = stream.time_base
            frame_duration = 1000.0 / float(stream.average_rate) if stream.average_rate else None
            self._seek(container, stream, start)
            try:
                for frame in container.decode(stream):
                    ts = _to_ms(frame.pts, tb)
                    if ts is None or ts < start:
                        continue
                    if ts >= end:
                        break
                    frames.append(DecodedVideoFrame(frame=frame, timestamp=ts, duration=frame_duration))
            except BaseException:
                for handle in frames:
                    handle.close()
                raise
        _logger.debug("Decoded %d video frames in [%.1f, %.1f)", len(frames), start, end)
        return frames

    def decode_audio_range(self, start: float, end: float) -> list[AudioChunk]:
        chunks: list[AudioChunk] = []
        with self._open() as container:
            stream = container.streams.audio[0]
            tb = stream.time_base
            resampler = av.AudioResampler(format="fltp", layout=stream.layout, rate=stream.rate)
            self._seek(container, stream, start)
            for frame in container.decode(stream):
                ts = _to_ms(frame.pts, tb)
                if ts is None:
                    continue
                if ts > end:
                    break
                for resampled in resampler.resample(frame):
                    samples = resampled.to_ndarray()
                    chunks.append(
                        AudioChunk(
                            channels=[samples[ch] for ch in range(samples.shape[0])],
                            sample_rate=resampled.sample_rate,
                            timestamp=ts,
                            duration=resampled.samples / resampled.sample_rate * 1000.0,
                        )
                    )
        return chunks

    def close(self) -> None:
        self._closed.set()


class PyAVBackend:
    """MediaBackend that demuxes and decodes with PyAV."""

    def open(self, source: ByteSource) -> PyAVMediaSource:
        return PyAVMediaSource(source)
