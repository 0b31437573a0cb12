"""
Shared per-file media cache and the registry that owns it.

One SharedMediaCache exists per URL per execution context. It is created by
the first consumer's META request and destroyed when the last consumer
detaches; destruction releases every decoded payload and closes the media
source. Mutation happens only on the execution context.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Iterator

from gopcache.infra.exceptions import MetaLoadError
from gopcache.runtime.gop_state import GOPDecodeState
from gopcache.runtime.media_types import CacheState, GOPDescriptor, MediaMeta

if TYPE_CHECKING:
    from gopcache.adapters.base import MediaSource
    from gopcache.runtime.messages import Consumer


class SharedMediaCache:
    """Metadata, GOP index and per-GOP decode states for one URL."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.state = CacheState.NONE
        self.meta: MediaMeta | None = None
        self.gops: tuple[GOPDescriptor, ...] = ()
        self.gop_states: tuple[GOPDecodeState, ...] = ()
        self.source: MediaSource | None = None
        self.error: MetaLoadError | None = None
        self.consumers: dict[int, Consumer] = {}
        # consumer id -> message id of the META request still waiting on the load
        self.waiters: dict[int, int] = {}
        self.destroyed = False
        self._logger = logging.getLogger(__name__)

    @property
    def ref_count(self) -> int:
        return len(self.consumers)

    @property
    def has_audio(self) -> bool:
        return self.meta is not None and self.meta.audio is not None

    def attach(self, consumer: Consumer) -> bool:
        """Register a consumer. Returns False if it was already attached."""
        if consumer.consumer_id in self.consumers:
            return False
        self.consumers[consumer.consumer_id] = consumer
        self._logger.debug("%s: consumer %d attached (refs=%d)", self.url, consumer.consumer_id, self.ref_count)
        return True

    def detach(self, consumer_id: int) -> list[int]:
        """Unregister a consumer from the entry and every GOP. Returns GOPs that were reset."""
        reset = [gop.index for gop in self.gop_states if gop.release(consumer_id)]
        self.waiters.pop(consumer_id, None)
        if self.consumers.pop(consumer_id, None) is not None:
            self._logger.debug("%s: consumer %d detached (refs=%d)", self.url, consumer_id, self.ref_count)
        return reset

    def gop(self, index: int) -> GOPDecodeState | None:
        if 0 <= index < len(self.gop_states):
            return self.gop_states[index]
        return None

    def install_meta(self, meta: MediaMeta, gops: list[GOPDescriptor], source: MediaSource) -> None:
        self.meta = meta
        self.gops = tuple(gops)
        self.gop_states = tuple(GOPDecodeState(g) for g in self.gops)
        self.source = source
        self.state = CacheState.META
        self._logger.info(
            "%s: meta loaded (duration=%.1fms, gops=%d, size=%d)",
            self.url, meta.duration, len(self.gops), meta.file_size,
        )

    def fail_meta(self, error: MetaLoadError) -> None:
        self.state = CacheState.ERROR
        self.error = error
        self._logger.error("%s: meta load failed: %s", self.url, error)

    def take_waiters(self) -> list[tuple[int, int]]:
        waiters = list(self.waiters.items())
        self.waiters.clear()
        return waiters

    def destroy(self) -> None:
        """Release every payload and close the media source. Idempotent."""
        if self.destroyed:
            return
        self.destroyed = True
        for gop in self.gop_states:
            gop.reset()
        self.consumers.clear()
        self.waiters.clear()
        source, self.source = self.source, None
        if source is not None:
            source.close()
        self._logger.info("%s: cache entry destroyed", self.url)

    def snapshot(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "state": self.state.value,
            "ref_count": self.ref_count,
            "consumers": list(self.consumers),
            "waiters": list(self.waiters),
            "error": str(self.error) if self.error else None,
            "meta": self.meta.to_dict() if self.meta else None,
            "gops": [gop.snapshot() for gop in self.gop_states],
        }


class MediaCacheRegistry:
    """URL-keyed SharedMediaCache entries owned by one execution context."""

    def __init__(self) -> None:
        self._entries: dict[str, SharedMediaCache] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> SharedMediaCache | None:
        with self._lock:
            return self._entries.get(url)

    def get_or_create(self, url: str) -> tuple[SharedMediaCache, bool]:
        with self._lock:
            entry = self._entries.get(url)
            if entry is not None:
                return entry, False
            entry = SharedMediaCache(url)
            self._entries[url] = entry
            return entry, True

    def is_current(self, entry: SharedMediaCache) -> bool:
        """True while ``entry`` is still the live entry for its URL."""
        with self._lock:
            return self._entries.get(entry.url) is entry

    def destroy(self, url: str) -> bool:
        with self._lock:
            entry = self._entries.pop(url, None)
        if entry is None:
            return False
        entry.destroy()
        return True

    def destroy_all(self) -> int:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            entry.destroy()
        return len(entries)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[SharedMediaCache]:
        with self._lock:
            return iter(list(self._entries.values()))
