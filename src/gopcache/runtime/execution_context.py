"""
Decode execution context.

DecodeExecutionContext owns the MediaCacheRegistry and is the single writer of
every SharedMediaCache and GOPDecodeState it holds. Schedulers reach it only
through submit(DecoderRequest); results come back on each scheduler's
NotificationChannel.

Two modes with identical behavior:

- threaded: start() runs a mailbox loop on a dedicated thread. Metadata loads
  and GOP decodes run on a ThreadPoolExecutor and post their completions back
  into the mailbox.
- colocated: no thread. submit() processes the mailbox inline in the caller's
  thread and run_pending() fires debounce timers that have come due on the
  clock.

Decode requests are debounced: the first acquire of a GOP arms a timer for
``decode_debounce`` ms, and the decode only starts if the GOP still has users
when the timer fires. Completed decodes carry the GOP generation they were
started for; a result whose generation no longer matches (the GOP was released
and possibly re-acquired meanwhile) is released instead of installed.
"""

from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

from gopcache.adapters.base import MediaBackend, RangeFetcher
from gopcache.adapters.byte_source import open_byte_source
from gopcache.infra.exceptions import (
    ContextClosedError,
    DecodeError,
    MetaLoadError,
    RangeFetchError,
)
from gopcache.infra.range_store import RangeStore
from gopcache.runtime.clock import MasterClock, RealTimeMasterClock
from gopcache.runtime.config import DecoderConfig
from gopcache.runtime.gop_indexer import index_media
from gopcache.runtime.gop_state import AcquireOutcome, GOPDecodeState
from gopcache.runtime.media_cache import MediaCacheRegistry, SharedMediaCache
from gopcache.runtime.media_types import (
    AudioBuffer,
    CacheState,
    DecodeResult,
    GOPDescriptor,
    GOPState,
    MediaMeta,
)
from gopcache.runtime.messages import DecoderRequest, Mailbox, RequestType
from gopcache.runtime.notifications import Notification, NotificationKind


@dataclass(frozen=True)
class _DecodeDue:
    cache: SharedMediaCache
    index: int
    consumer_id: int
    message_id: int


@dataclass(frozen=True)
class _MetaLoaded:
    cache: SharedMediaCache
    future: Future


@dataclass(frozen=True)
class _DecodeFinished:
    cache: SharedMediaCache
    index: int
    token: int
    message_id: int
    future: Future


def _load_meta(
    url: str,
    fetcher: RangeFetcher,
    backend: MediaBackend,
    config: DecoderConfig,
    store: RangeStore | None,
) -> tuple[MediaMeta, list[GOPDescriptor], Any]:
    """Probe, open and index one file. Runs on a worker."""
    try:
        size = fetcher.probe_size(url)
        byte_source = open_byte_source(url, size, fetcher, config, store)
        source = backend.open(byte_source)
        try:
            probe = source.probe()
            gops = index_media(source, probe, config)
        except BaseException:
            source.close()
            raise
    except MetaLoadError:
        raise
    except RangeFetchError as e:
        raise MetaLoadError(f"Failed to fetch {url}: {e}") from e
    except Exception as e:
        raise MetaLoadError(f"Failed to load metadata for {url}: {e}") from e
    meta = MediaMeta(duration=probe.duration, file_size=size, video=probe.video, audio=probe.audio)
    return meta, gops, source


def _decode_gop(
    source: Any,
    gop: GOPDescriptor,
    *,
    has_video: bool,
    include_audio: bool,
    is_last: bool,
) -> DecodeResult:
    """Decode one GOP's frames and audio. Runs on a worker."""
    frames: list[Any] = []
    try:
        if has_video:
            frames = list(source.decode_video_range(gop.timestamp, gop.end))
        audio: AudioBuffer | None = None
        if include_audio:
            audio_start = gop.audio_timestamp
            audio_end = gop.audio_timestamp + gop.audio_duration
            # A sample on a GOP boundary belongs to the earlier GOP; the last GOP keeps its tail
            kept = [
                chunk
                for chunk in source.decode_audio_range(audio_start, audio_end)
                if chunk.timestamp >= audio_start and (is_last or chunk.timestamp < audio_end)
            ]
            audio = AudioBuffer.from_chunks(kept)
    except BaseException as e:
        for frame in frames:
            frame.close()
        if isinstance(e, DecodeError) or not isinstance(e, Exception):
            raise
        raise DecodeError(f"GOP {gop.index} failed to decode: {e}", gop_index=gop.index) from e
    return DecodeResult(video_frames=frames, audio_buffer=audio)


class InlineExecutor(Executor):
    """Runs every submitted callable immediately in the submitting thread."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(result)
        return future


class DecodeExecutionContext:
    """Single-writer owner of the shared media caches."""

    def __init__(
        self,
        backend: MediaBackend,
        fetcher: RangeFetcher,
        config: DecoderConfig | None = None,
        *,
        range_store: RangeStore | None = None,
        clock: MasterClock | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.config = config or DecoderConfig()
        self._backend = backend
        self._fetcher = fetcher
        self._range_store = range_store
        self._clock = clock or RealTimeMasterClock()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.decode_workers, thread_name_prefix="gopcache-decode"
        )
        self._registry = MediaCacheRegistry()
        self._mailbox = Mailbox()
        self._message_ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._drain_lock = threading.Lock()
        self._drain_owner: int | None = None
        self._closed = False
        self._logger = logging.getLogger(__name__)

    # ---- public API -------------------------------------------------------

    @property
    def registry(self) -> MediaCacheRegistry:
        return self._registry

    @property
    def threaded(self) -> bool:
        return self._thread is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def next_message_id(self) -> int:
        with self._id_lock:
            return next(self._message_ids)

    def submit(self, request: DecoderRequest) -> None:
        """Hand a request to the context. Processed inline in colocated mode."""
        if self._closed or not self._mailbox.post(request):
            raise ContextClosedError(f"Execution context is stopped; dropped {request.kind.value} request")
        if self._thread is None:
            self._drain()

    def run_pending(self) -> int:
        """Colocated mode: process queued messages and due timers. Returns the count."""
        if self._thread is not None or self._closed:
            return 0
        return self._drain()

    def start(self) -> None:
        """Switch to threaded mode."""
        if self._closed:
            raise ContextClosedError("Execution context is stopped")
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="gopcache-context", daemon=True)
        self._thread.start()
        self._logger.info("Execution context started (threaded, workers=%d)", self.config.decode_workers)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop processing and destroy every cache entry. Idempotent."""
        if self._closed:
            return
        self._closed = True
        leftover = self._mailbox.close()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                self._logger.warning("Execution context thread did not exit within %ss", timeout)
        for message in leftover:
            self._discard(message)
        destroyed = self._registry.destroy_all()
        if self._owns_executor:
            # Running jobs release their own results once they see the closed mailbox
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._logger.info("Execution context stopped (%d cache entries destroyed)", destroyed)

    def snapshot(self) -> dict[str, Any]:
        """Read-only diagnostics. Values may be slightly stale in threaded mode."""
        entries = []
        for entry in self._registry:
            data = entry.snapshot()
            counts = {state.value: 0 for state in GOPState}
            for gop in data["gops"]:
                counts[gop["state"]] += 1
            data["gop_states"] = counts
            entries.append(data)
        return {
            "mode": "threaded" if self.threaded else "colocated",
            "closed": self._closed,
            "pending": self._mailbox.pending(),
            "entries": entries,
        }

    def __enter__(self) -> DecodeExecutionContext:
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    # ---- mailbox processing -----------------------------------------------

    def _run(self) -> None:
        while True:
            message = self._mailbox.get(self._clock.now_ms)
            if message is None:
                return
            self._dispatch(message)

    def _drain(self) -> int:
        # Re-entrant submissions (from inside a handler) stay queued for the outer loop
        if self._drain_owner == threading.get_ident():
            return 0
        processed = 0
        with self._drain_lock:
            self._drain_owner = threading.get_ident()
            try:
                while True:
                    message = self._mailbox.pop_ready(self._clock.now_ms())
                    if message is None:
                        break
                    self._dispatch(message)
                    processed += 1
            finally:
                self._drain_owner = None
        return processed

    def _dispatch(self, message: Any) -> None:
        try:
            if isinstance(message, DecoderRequest):
                handler = {
                    RequestType.META: self._handle_meta,
                    RequestType.DECODE: self._handle_decode,
                    RequestType.RELEASE: self._handle_release,
                    RequestType.DETACH: self._handle_detach,
                }[message.kind]
                handler(message)
            elif isinstance(message, _DecodeDue):
                self._handle_decode_due(message)
            elif isinstance(message, _DecodeFinished):
                self._handle_decode_finished(message)
            elif isinstance(message, _MetaLoaded):
                self._handle_meta_loaded(message)
            else:
                self._logger.warning("Ignoring unknown message %r", message)
        except Exception:
            self._logger.exception("Error handling %r", message)

    def _discard(self, message: Any) -> None:
        """Free whatever a never-processed completion carries."""
        if isinstance(message, (_DecodeFinished, _MetaLoaded)):
            self._release_future(message.future, message)

    def _release_future(self, future: Future, message: Any) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        if isinstance(message, _DecodeFinished):
            future.result().release()
        else:
            future.result()[2].close()

    def _post_completion(self, message: Any) -> None:
        # Runs on the worker (or inline). In colocated mode the message waits for the next drain.
        if not self._mailbox.post(message):
            self._release_future(message.future, message)

    # ---- notifications ----------------------------------------------------

    def _notify(
        self,
        cache: SharedMediaCache,
        consumer_id: int,
        kind: NotificationKind,
        message_id: int | None,
        **fields: Any,
    ) -> None:
        consumer = cache.consumers.get(consumer_id)
        if consumer is None:
            return
        consumer.channel.put(
            Notification(kind=kind, url=cache.url, consumer_id=consumer_id, message_id=message_id, **fields)
        )

    def _notify_meta(self, cache: SharedMediaCache, consumer_id: int, message_id: int | None) -> None:
        self._notify(
            cache,
            consumer_id,
            NotificationKind.META,
            message_id,
            meta=cache.meta,
            gops=cache.gops,
            gop_states=cache.gop_states,
        )

    def _notify_meta_error(self, cache: SharedMediaCache, consumer_id: int, message_id: int | None) -> None:
        self._notify(
            cache,
            consumer_id,
            NotificationKind.ERROR,
            message_id,
            error=cache.error,
            reason=str(cache.error),
        )

    def _notify_decoded(
        self, cache: SharedMediaCache, gop: GOPDecodeState, consumer_id: int, message_id: int | None
    ) -> None:
        self._notify(cache, consumer_id, NotificationKind.CANPLAY, message_id, gop_index=gop.index)
        consumer = cache.consumers.get(consumer_id)
        # Audio for a GOP the consumer has not reached yet is handed over ahead of time
        if gop.audio_buffer is not None and consumer is not None and consumer.active_gop_index < gop.index:
            self._notify(cache, consumer_id, NotificationKind.AUDIO_BUFFER, message_id, gop_index=gop.index)

    # ---- metadata ---------------------------------------------------------

    def _handle_meta(self, request: DecoderRequest) -> None:
        if request.consumer is None:
            raise ValueError("META request without a consumer")
        cache, created = self._registry.get_or_create(request.url)
        if created:
            self._logger.info("%s: cache entry created", request.url)
        cache.attach(request.consumer)

        if cache.state is CacheState.META:
            self._notify_meta(cache, request.consumer_id, request.message_id)
        elif cache.state is CacheState.ERROR:
            self._notify_meta_error(cache, request.consumer_id, request.message_id)
        elif cache.state is CacheState.LOADING_META:
            cache.waiters[request.consumer_id] = request.message_id
        else:
            cache.state = CacheState.LOADING_META
            cache.waiters[request.consumer_id] = request.message_id
            self._logger.info("%s: loading meta", request.url)
            future = self._executor.submit(
                _load_meta, request.url, self._fetcher, self._backend, self.config, self._range_store
            )
            future.add_done_callback(lambda f, c=cache: self._post_completion(_MetaLoaded(c, f)))

    def _handle_meta_loaded(self, message: _MetaLoaded) -> None:
        cache, future = message.cache, message.future
        if not self._registry.is_current(cache):
            self._logger.debug("%s: meta load finished for a destroyed entry", cache.url)
            self._release_future(future, message)
            return
        error = None if future.cancelled() else future.exception()
        if future.cancelled() or error is not None:
            if not isinstance(error, MetaLoadError):
                error = MetaLoadError(f"Failed to load metadata for {cache.url}: {error or 'cancelled'}")
            cache.fail_meta(error)
            for consumer_id, message_id in cache.take_waiters():
                self._notify_meta_error(cache, consumer_id, message_id)
            return
        meta, gops, source = future.result()
        cache.install_meta(meta, gops, source)
        for consumer_id, message_id in cache.take_waiters():
            self._notify_meta(cache, consumer_id, message_id)

    # ---- decode -----------------------------------------------------------

    def _lookup_gop(self, request: DecoderRequest) -> tuple[SharedMediaCache, GOPDecodeState] | None:
        cache = self._registry.get(request.url)
        if cache is None or cache.state is not CacheState.META:
            self._logger.debug("%s: %s for GOP %s before meta", request.url, request.kind.value, request.index)
            return None
        gop = cache.gop(request.index if request.index is not None else -1)
        if gop is None:
            self._logger.warning("%s: no GOP %s", request.url, request.index)
            return None
        return cache, gop

    def _handle_decode(self, request: DecoderRequest) -> None:
        found = self._lookup_gop(request)
        if found is None:
            return
        cache, gop = found
        if request.consumer_id not in cache.consumers:
            self._logger.debug("%s: decode request from detached consumer %d", cache.url, request.consumer_id)
            return

        outcome, added = gop.acquire(request.consumer_id)
        if outcome is AcquireOutcome.FAILED:
            self._notify(
                cache,
                request.consumer_id,
                NotificationKind.ERROR,
                request.message_id,
                gop_index=gop.index,
                error=gop.error,
                reason=str(gop.error),
            )
        elif outcome is AcquireOutcome.HIT:
            if added:
                self._notify_decoded(cache, gop, request.consumer_id, request.message_id)
        elif outcome is AcquireOutcome.STARTED:
            due = _DecodeDue(cache, gop.index, request.consumer_id, request.message_id)
            if self.config.decode_debounce > 0:
                self._mailbox.post_at(self._clock.now_ms() + self.config.decode_debounce, due)
            else:
                self._mailbox.post(due)

    def _handle_decode_due(self, message: _DecodeDue) -> None:
        cache = message.cache
        if not self._registry.is_current(cache):
            return
        gop = cache.gop(message.index)
        if gop is None or gop.in_flight is not None:
            return
        if gop.state is not GOPState.DECODING or not gop.users:
            # Released again during the debounce window
            self._logger.debug("%s: GOP %d decode dropped after debounce", cache.url, gop.index)
            return
        self._start_decode(cache, gop, message.message_id)

    def _start_decode(self, cache: SharedMediaCache, gop: GOPDecodeState, message_id: int) -> None:
        include_audio = cache.has_audio and not self.config.mute and not gop.decoded_once
        token = gop.begin_decode(with_audio=include_audio)
        has_video = cache.meta is not None and cache.meta.video is not None
        is_last = gop.index == len(cache.gop_states) - 1
        self._logger.debug(
            "%s: decoding GOP %d [%.1f, %.1f) audio=%s",
            cache.url, gop.index, gop.timestamp, gop.end, include_audio,
        )
        future = self._executor.submit(
            _decode_gop,
            cache.source,
            gop.descriptor,
            has_video=has_video,
            include_audio=include_audio,
            is_last=is_last,
        )
        future.add_done_callback(
            lambda f, c=cache, i=gop.index, t=token, m=message_id: self._post_completion(
                _DecodeFinished(c, i, t, m, f)
            )
        )

    def _handle_decode_finished(self, message: _DecodeFinished) -> None:
        cache, future = message.cache, message.future
        if not self._registry.is_current(cache):
            self._release_future(future, message)
            return
        gop = cache.gop(message.index)
        if gop is None:
            self._release_future(future, message)
            return

        error = None if future.cancelled() else future.exception()
        if future.cancelled() or error is not None:
            if not isinstance(error, DecodeError):
                error = DecodeError(f"GOP {gop.index} failed to decode: {error or 'cancelled'}", gop_index=gop.index)
            for consumer_id in gop.fail(message.token, error):
                self._notify(
                    cache,
                    consumer_id,
                    NotificationKind.ERROR,
                    message.message_id,
                    gop_index=gop.index,
                    error=error,
                    reason=str(error),
                )
            if gop.state is GOPState.ERROR:
                self._logger.error("%s: GOP %d decode failed: %s", cache.url, gop.index, error)
        elif gop.complete(message.token, future.result()):
            self._logger.debug("%s: GOP %d decoded (%d frames)", cache.url, gop.index, len(gop.video_frames))
            for consumer_id in list(gop.users):
                self._notify_decoded(cache, gop, consumer_id, message.message_id)

        # Re-acquired while the stale job was running
        if gop.state is GOPState.DECODING and gop.users and gop.in_flight is None:
            self._start_decode(cache, gop, message.message_id)

    # ---- release / detach -------------------------------------------------

    def _handle_release(self, request: DecoderRequest) -> None:
        found = self._lookup_gop(request)
        if found is None:
            return
        cache, gop = found
        if gop.release(request.consumer_id):
            self._logger.debug("%s: GOP %d released", cache.url, gop.index)

    def _handle_detach(self, request: DecoderRequest) -> None:
        cache = self._registry.get(request.url)
        if cache is None:
            return
        cache.detach(request.consumer_id)
        if cache.ref_count == 0:
            self._registry.destroy(request.url)



class SharedExecutionContext:
    """Refcounted process-wide execution context.

    An application creates one of these at startup and hands it to everything
    that builds schedulers. The first acquire() builds the context through
    ``factory``; the release() that drops the last reference stops it, which
    destroys every cache entry. Schedulers on any acquired reference share one
    MediaCacheRegistry, so each URL is loaded and decoded once per process.
    """

    def __init__(self, factory: Callable[[], DecodeExecutionContext]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._context: DecodeExecutionContext | None = None
        self._refs = 0
        self._logger = logging.getLogger(__name__)

    @property
    def refs(self) -> int:
        return self._refs

    @property
    def current(self) -> DecodeExecutionContext | None:
        return self._context

    def acquire(self) -> DecodeExecutionContext:
        with self._lock:
            if self._context is None:
                self._context = self._factory()
                self._logger.info("Shared execution context created")
            self._refs += 1
            return self._context

    def release(self) -> None:
        with self._lock:
            if self._refs == 0:
                raise RuntimeError("Shared execution context released more often than acquired")
            self._refs -= 1
            if self._refs > 0:
                return
            context, self._context = self._context, None
        if context is not None:
            context.stop()
            self._logger.info("Shared execution context torn down")
