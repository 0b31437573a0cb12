"""
Decoder configuration.

Defines DecoderConfig, the construction-time configuration surface shared by
the execution context and the decode schedulers. There are no hidden globals:
every component receives its DecoderConfig explicitly.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from gopcache.infra.settings import Settings

DEFAULT_DECODE_DEBOUNCE_MS = 100.0
DEFAULT_AUDIO_SEGMENT_MS = 5000.0
DEFAULT_RANGE_CHUNK_SIZE = 4 * 1024 * 1024
DEFAULT_FRAME_EPSILON_MS = 1.0


@dataclass(frozen=True)
class DecoderConfig:
    """
    Configuration for decode scheduling and loading.

    All durations are milliseconds.
    """
    decode_next_duration: float = 0.0    # look-ahead: GOPs starting within this window are decoded
    release_prev_duration: float = 0.0   # look-behind: GOPs ending further back are released
    gop_min_duration: float = 0.0        # shorter GOPs are merged into one logical GOP
    preload_all: bool = False            # fetch the whole file instead of range windows
    mute: bool = False                   # never decode audio
    range_cache: bool = False            # persist fetched byte ranges
    decode_debounce: float = DEFAULT_DECODE_DEBOUNCE_MS
    audio_segment_duration: float = DEFAULT_AUDIO_SEGMENT_MS
    range_chunk_size: int = DEFAULT_RANGE_CHUNK_SIZE
    frame_epsilon: float = DEFAULT_FRAME_EPSILON_MS
    decode_workers: int = 2

    def __post_init__(self) -> None:
        for name in (
            "decode_next_duration",
            "release_prev_duration",
            "gop_min_duration",
            "decode_debounce",
            "frame_epsilon",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.audio_segment_duration <= 0:
            raise ValueError("audio_segment_duration must be greater than zero")
        if self.range_chunk_size <= 0:
            raise ValueError("range_chunk_size must be greater than zero")
        if self.decode_workers < 1:
            raise ValueError("decode_workers must be at least 1")

    @property
    def audio_partition_duration(self) -> float:
        """Segment length used to partition audio-only files."""
        return self.gop_min_duration or self.audio_segment_duration

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> DecoderConfig:
        values: dict[str, Any] = {
            "decode_next_duration": settings.decode_next_duration,
            "release_prev_duration": settings.release_prev_duration,
            "gop_min_duration": settings.gop_min_duration,
            "preload_all": settings.preload_all,
            "mute": settings.mute,
            "range_cache": settings.range_cache,
            "decode_debounce": settings.decode_debounce,
            "audio_segment_duration": settings.audio_segment_duration,
            "range_chunk_size": settings.range_chunk_size,
            "decode_workers": settings.decode_workers,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
