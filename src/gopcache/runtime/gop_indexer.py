"""
GOP indexer: turns packet metadata into a dense list of GOP descriptors.

A keyframe opens a new GOP. With a minimum GOP duration configured, a GOP
that would be shorter than the minimum is folded into its predecessor (the
first GOP, having no predecessor, absorbs the following keyframe instead).
The final GOP is back-filled from the track duration because its true end is
only known once the duration is computed.

Files without a video track are partitioned into fixed-length audio spans.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from gopcache.infra.exceptions import MetaLoadError
from gopcache.runtime.media_types import (
    AudioTrackInfo,
    GOPDescriptor,
    KeyframePacket,
    MediaProbe,
)

if TYPE_CHECKING:
    from gopcache.adapters.base import MediaSource
    from gopcache.runtime.config import DecoderConfig

_logger = logging.getLogger(__name__)


@dataclass
class _Span:
    timestamp: float
    sequence_number: int
    duration: float
    audio_timestamp: float | None = None
    audio_duration: float | None = None

    @property
    def end(self) -> float:
        return self.timestamp + self.duration


def _freeze(spans: list[_Span]) -> list[GOPDescriptor]:
    return [
        GOPDescriptor(
            index=i,
            sequence_number=span.sequence_number,
            timestamp=span.timestamp,
            duration=span.duration,
            audio_timestamp=span.timestamp if span.audio_timestamp is None else span.audio_timestamp,
            audio_duration=span.duration if span.audio_duration is None else span.audio_duration,
        )
        for i, span in enumerate(spans)
    ]


def _backfill_last(spans: list[_Span], total_duration: float) -> None:
    if spans:
        last = spans[-1]
        last.duration = max(0.0, total_duration - last.timestamp)


def _video_spans(
    keyframes: Iterable[KeyframePacket],
    total_duration: float,
    gop_min_duration: float = 0.0,
) -> list[_Span]:
    spans: list[_Span] = []
    for packet in keyframes:
        if spans and packet.timestamp <= spans[-1].timestamp:
            # Out-of-order or duplicate keyframe timestamp; spans must stay ascending.
            continue
        if spans:
            last = spans[-1]
            gap = packet.timestamp - last.timestamp
            if gop_min_duration and gap < gop_min_duration:
                if len(spans) == 1:
                    continue
                spans.pop()
                spans[-1].duration = packet.timestamp - spans[-1].timestamp
            else:
                last.duration = gap
        spans.append(_Span(packet.timestamp, packet.sequence_number, packet.duration))
    _backfill_last(spans, total_duration)
    return spans


def build_gop_index(
    keyframes: Iterable[KeyframePacket],
    total_duration: float,
    gop_min_duration: float = 0.0,
) -> list[GOPDescriptor]:
    """Index keyframe packets (timestamp order) of the primary video track."""
    return _freeze(_video_spans(keyframes, total_duration, gop_min_duration))


def _audio_spans(
    packets: Iterable[KeyframePacket],
    total_duration: float,
    segment_duration: float,
) -> list[_Span]:
    spans: list[_Span] = []
    segment_start: float | None = None
    sequence_number = 0
    for packet in packets:
        if segment_start is None or packet.timestamp - segment_start >= segment_duration:
            if spans:
                spans[-1].duration = packet.timestamp - spans[-1].timestamp
            spans.append(_Span(packet.timestamp, sequence_number, packet.duration))
            segment_start = packet.timestamp
        sequence_number += 1
    _backfill_last(spans, total_duration)
    return spans


def build_audio_gop_index(
    packets: Iterable[KeyframePacket],
    total_duration: float,
    segment_duration: float,
) -> list[GOPDescriptor]:
    """Partition an audio-only track into fixed-duration pseudo GOPs.

    Audio has no keyframe concept; the last span may be shorter than the rest.
    """
    if segment_duration <= 0:
        raise ValueError("segment_duration must be greater than zero")
    return _freeze(_audio_spans(packets, total_duration, segment_duration))


def _align_audio_edges(spans: list[_Span], audio: AudioTrackInfo) -> None:
    """Widen the first/last audio spans to the audio track's own boundaries."""
    first, last = spans[0], spans[-1]
    first.audio_timestamp = min(first.timestamp, audio.timestamp)
    first.audio_duration = first.end - first.audio_timestamp
    audio_end = max(last.end, audio.timestamp + audio.duration)
    last_audio_start = last.timestamp if last.audio_timestamp is None else last.audio_timestamp
    last.audio_duration = audio_end - last_audio_start


def index_media(source: MediaSource, probe: MediaProbe, config: DecoderConfig) -> list[GOPDescriptor]:
    """Build the GOP index for an opened media source.

    Raises MetaLoadError when the file has neither a decodable video nor an
    audio track, or when indexing yields no GOP at all.
    """
    if probe.video is not None:
        spans = _video_spans(
            sorted(source.keyframe_packets(), key=lambda p: p.timestamp),
            probe.video.duration or probe.duration,
            config.gop_min_duration,
        )
        if spans and probe.audio is not None:
            _align_audio_edges(spans, probe.audio)
    elif probe.audio is not None:
        spans = _audio_spans(
            source.audio_packets(),
            probe.audio.duration or probe.duration,
            config.audio_partition_duration,
        )
    else:
        raise MetaLoadError("Media has neither a decodable video nor an audio track")

    if not spans:
        raise MetaLoadError("Media index is empty: no keyframes or audio packets found")

    gops = _freeze(spans)
    _logger.debug(
        "Indexed %d GOPs (video=%s, audio=%s, gop_min_duration=%s)",
        len(gops), probe.video is not None, probe.audio is not None, config.gop_min_duration,
    )
    return gops
