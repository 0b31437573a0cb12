"""
Binary-search lookups over ascending timestamps.

Both searches keep the invariant ``key(items[lo - 1]) <= t < key(items[hi])``
and return the last item whose timestamp is not after ``t``.
"""

from __future__ import annotations

from typing import Callable, Sequence, TypeVar

from gopcache.runtime.media_types import GOPDescriptor

T = TypeVar("T")


def _last_not_after(items: Sequence[T], t: float, key: Callable[[T], float]) -> int:
    """Index of the last item with ``key(item) <= t``; -1 if every item is after ``t``."""
    lo, hi = 0, len(items)
    while lo < hi:
        mid = (lo + hi) // 2
        if key(items[mid]) <= t:
            lo = mid + 1
        else:
            hi = mid
    return lo - 1


def nearest_preceding_gop(gops: Sequence[GOPDescriptor], t: float) -> int | None:
    """Index of the GOP the cursor ``t`` falls into.

    ``None`` for an empty index; 0 when ``t <= 0``, for a single GOP, or when
    ``t`` precedes the first GOP; the last index when ``t`` is past the end.
    """
    n = len(gops)
    if n == 0:
        return None
    if n == 1 or t <= 0:
        return 0
    return max(0, _last_not_after(gops, t, lambda g: g.timestamp))


def frame_at_time(frames: Sequence[T], t: float) -> T | None:
    """Frame whose ``[timestamp, timestamp + duration)`` holds ``t``.

    Falls back to the nearest preceding frame when no interval contains ``t``
    (zero or unknown durations), and to the first frame when ``t`` precedes
    all of them. ``None`` only for an empty sequence.
    """
    if not frames:
        return None
    i = _last_not_after(frames, t, lambda f: f.timestamp)  # type: ignore[attr-defined]
    return frames[max(0, i)]
