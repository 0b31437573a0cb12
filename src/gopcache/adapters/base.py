"""
Collaborator interfaces.

The runtime depends only on these Protocols; concrete implementations live in
sibling modules and tests provide in-memory fakes.
"""

from __future__ import annotations

from typing import Iterable, Protocol

from gopcache.runtime.media_types import AudioChunk, KeyframePacket, MediaProbe


class RangeFetcher(Protocol):
    """Fetches byte ranges of a URL. ``end`` is exclusive."""

    def probe_size(self, url: str) -> int:
        ...

    def fetch_range(self, url: str, start: int, end: int) -> bytes:
        ...


class ByteSource(Protocol):
    """Random-access bytes of one file."""

    url: str
    size: int

    def read(self, start: int, end: int) -> bytes:
        ...


class MediaSource(Protocol):
    """An opened media file: track info, packet metadata and range decoding.

    Decode methods may be called concurrently from worker threads for
    different ranges.
    """

    def probe(self) -> MediaProbe:
        ...

    def keyframe_packets(self) -> Iterable[KeyframePacket]:
        ...

    def audio_packets(self) -> Iterable[KeyframePacket]:
        ...

    def decode_video_range(self, start: float, end: float) -> Iterable:
        """Frame handles with ``start <= timestamp < end`` in presentation order."""
        ...

    def decode_audio_range(self, start: float, end: float) -> Iterable[AudioChunk]:
        """Audio chunks from the packet at or before ``start`` up to and past ``end``."""
        ...

    def close(self) -> None:
        ...


class MediaBackend(Protocol):
    def open(self, source: ByteSource) -> MediaSource:
        ...
