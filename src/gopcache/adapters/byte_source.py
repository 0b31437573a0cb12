"""
Byte sources: random access to a file's bytes on top of a RangeFetcher.

RangeByteSource reads in ``chunk_size``-aligned chunks. Recently used chunks
stay in memory; with a RangeStore attached every chunk is also looked up in
and written to the persistent range cache. PreloadedByteSource fetches the
whole file once.
"""

from __future__ import annotations

import io
import logging
import threading
from collections import OrderedDict
from typing import TYPE_CHECKING

from gopcache.runtime.config import DEFAULT_RANGE_CHUNK_SIZE, DecoderConfig

if TYPE_CHECKING:
    from gopcache.adapters.base import ByteSource, RangeFetcher
    from gopcache.infra.range_store import RangeStore

_logger = logging.getLogger(__name__)

DEFAULT_RESIDENT_CHUNKS = 4


def _clamp(start: int, end: int, size: int) -> tuple[int, int]:
    start = max(0, min(start, size))
    end = max(start, min(end, size))
    return start, end


class RangeByteSource:
    """Streams bounded windows of a file through chunk-aligned range requests."""

    def __init__(
        self,
        url: str,
        size: int,
        fetcher: RangeFetcher,
        store: RangeStore | None = None,
        chunk_size: int = DEFAULT_RANGE_CHUNK_SIZE,
        resident_chunks: int = DEFAULT_RESIDENT_CHUNKS,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be greater than zero")
        self.url = url
        self.size = size
        self._fetcher = fetcher
        self._store = store
        self._chunk_size = chunk_size
        self._resident_chunks = max(1, resident_chunks)
        self._chunks: OrderedDict[int, bytes] = OrderedDict()
        self._lock = threading.Lock()

    def _chunk(self, chunk_start: int) -> bytes:
        with self._lock:
            data = self._chunks.get(chunk_start)
            if data is not None:
                self._chunks.move_to_end(chunk_start)
                return data

        chunk_end = min(chunk_start + self._chunk_size, self.size)
        data = None
        if self._store is not None:
            data = self._store.get(self.url, chunk_start, chunk_end)
        if data is None:
            data = self._fetcher.fetch_range(self.url, chunk_start, chunk_end)
            if self._store is not None:
                self._store.put(self.url, chunk_start, chunk_end, data)

        with self._lock:
            self._chunks[chunk_start] = data
            self._chunks.move_to_end(chunk_start)
            while len(self._chunks) > self._resident_chunks:
                self._chunks.popitem(last=False)
        return data

    def read(self, start: int, end: int) -> bytes:
        start, end = _clamp(start, end, self.size)
        if start == end:
            return b""
        first = start - start % self._chunk_size
        pieces = [self._chunk(offset) for offset in range(first, end, self._chunk_size)]
        joined = pieces[0] if len(pieces) == 1 else b"".join(pieces)
        offset = start - first
        return joined[offset : offset + (end - start)]


class PreloadedByteSource:
    """The whole file held in memory."""

    def __init__(self, url: str, data: bytes) -> None:
        self.url = url
        self.size = len(data)
        self._data = data

    @classmethod
    def load(
        cls,
        url: str,
        size: int,
        fetcher: RangeFetcher,
        store: RangeStore | None = None,
        chunk_size: int = DEFAULT_RANGE_CHUNK_SIZE,
    ) -> PreloadedByteSource:
        if store is None:
            data = fetcher.fetch_range(url, 0, size)
        else:
            data = RangeByteSource(url, size, fetcher, store, chunk_size, resident_chunks=1).read(0, size)
        _logger.debug("Preloaded %s (%d bytes)", url, len(data))
        return cls(url, data)

    def read(self, start: int, end: int) -> bytes:
        start, end = _clamp(start, end, self.size)
        return self._data[start:end]


def open_byte_source(
    url: str,
    size: int,
    fetcher: RangeFetcher,
    config: DecoderConfig,
    store: RangeStore | None = None,
) -> ByteSource:
    """Byte source for ``url`` in the mode ``config`` asks for."""
    if not config.range_cache:
        store = None
    if config.preload_all:
        return PreloadedByteSource.load(url, size, fetcher, store, config.range_chunk_size)
    return RangeByteSource(url, size, fetcher, store, config.range_chunk_size)


class ByteSourceReader(io.RawIOBase):
    """Seekable binary file object over a ByteSource, one per open container."""

    def __init__(self, source: ByteSource) -> None:
        super().__init__()
        self._source = source
        self._pos = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self._pos + offset
        elif whence == io.SEEK_END:
            pos = self._source.size + offset
        else:
            raise ValueError(f"invalid whence: {whence}")
        if pos < 0:
            raise ValueError("negative seek position")
        self._pos = pos
        return pos

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        data = self._source.read(self._pos, self._pos + len(view))
        n = len(data)
        view[:n] = data
        self._pos += n
        return n
