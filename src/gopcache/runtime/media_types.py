"""
Media data model shared by the indexer, the cache and the adapters.

All timestamps and durations are float milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, Sequence, runtime_checkable

import numpy as np


class GOPState(Enum):
    """Decode state of one GOP."""

    NONE = "none"
    DECODING = "decoding"
    DECODED = "decoded"
    ERROR = "error"


class CacheState(Enum):
    """Load state of a file-level cache entry."""

    NONE = "none"
    LOADING_META = "loading_meta"
    META = "meta"
    ERROR = "error"


@dataclass(frozen=True)
class KeyframePacket:
    """Packet metadata used for indexing (no payload)."""

    timestamp: float
    duration: float
    sequence_number: int


@dataclass(frozen=True)
class GOPDescriptor:
    """Immutable description of one independently decodable span."""

    index: int
    sequence_number: int
    timestamp: float
    duration: float
    audio_timestamp: float
    audio_duration: float

    @property
    def end(self) -> float:
        return self.timestamp + self.duration

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "sequence_number": self.sequence_number,
            "timestamp": self.timestamp,
            "duration": self.duration,
            "audio_timestamp": self.audio_timestamp,
            "audio_duration": self.audio_duration,
        }


@dataclass(frozen=True)
class VideoTrackInfo:
    id: int
    codec: str | None
    coded_width: int
    coded_height: int
    display_width: int
    display_height: int
    rotation: int = 0
    time_resolution: int = 0
    language_code: str | None = None
    name: str | None = None
    timestamp: float = 0.0
    duration: float = 0.0


@dataclass(frozen=True)
class AudioTrackInfo:
    id: int
    codec: str | None
    number_of_channels: int
    sample_rate: int
    language_code: str | None = None
    name: str | None = None
    timestamp: float = 0.0
    duration: float = 0.0


@dataclass(frozen=True)
class MediaProbe:
    """What a media source reports about itself before indexing."""

    duration: float
    video: VideoTrackInfo | None = None
    audio: AudioTrackInfo | None = None


@dataclass(frozen=True)
class MediaMeta:
    """Metadata published to every consumer of a file."""

    duration: float
    file_size: int
    video: VideoTrackInfo | None = None
    audio: AudioTrackInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        def _track(track: Any) -> dict[str, Any] | None:
            return None if track is None else dict(track.__dict__)

        return {
            "duration": self.duration,
            "file_size": self.file_size,
            "video": _track(self.video),
            "audio": _track(self.audio),
        }


@runtime_checkable
class VideoFrameHandle(Protocol):
    """A decoded frame that must be released explicitly exactly once."""

    timestamp: float
    duration: float | None

    def close(self) -> None:
        ...


@dataclass(eq=False)
class DecodedVideoFrame:
    """Frame handle wrapping a backend frame object (e.g. ``av.VideoFrame``)."""

    frame: Any
    timestamp: float
    duration: float | None = None
    closed: bool = field(default=False, init=False)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.frame = None


@dataclass
class AudioChunk:
    """Decoded float32 planar samples for a stretch of audio."""

    channels: list[np.ndarray]
    sample_rate: int
    timestamp: float
    duration: float

    @property
    def number_of_channels(self) -> int:
        return len(self.channels)

    @property
    def number_of_frames(self) -> int:
        return int(self.channels[0].shape[0]) if self.channels else 0


@dataclass
class AudioBuffer:
    """Contiguous samples covering one GOP's audio span, shaped (channels, frames)."""

    samples: np.ndarray
    sample_rate: int
    timestamp: float
    duration: float

    @property
    def number_of_channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def number_of_frames(self) -> int:
        return int(self.samples.shape[1])

    @classmethod
    def from_chunks(cls, chunks: Sequence[AudioChunk]) -> AudioBuffer | None:
        """Concatenate chunks in order; ``None`` when there is nothing to join."""
        chunks = [c for c in chunks if c.number_of_frames]
        if not chunks:
            return None
        channel_count = chunks[0].number_of_channels
        samples = np.stack(
            [
                np.concatenate([c.channels[ch].astype(np.float32, copy=False) for c in chunks])
                for ch in range(channel_count)
            ]
        )
        first, last = chunks[0], chunks[-1]
        return cls(
            samples=samples,
            sample_rate=first.sample_rate,
            timestamp=first.timestamp,
            duration=last.timestamp - first.timestamp + last.duration,
        )


@dataclass
class DecodeResult:
    """Payload produced by one GOP decode job."""

    video_frames: list[VideoFrameHandle] = field(default_factory=list)
    audio_buffer: AudioBuffer | None = None

    def release(self) -> None:
        """Close every frame handle of a result that will not be installed."""
        for frame in self.video_frames:
            frame.close()
        self.video_frames = []
        self.audio_buffer = None
