"""Clock abstractions used for debounce timing in the execution context.

Times are milliseconds on a monotonic timeline. The execution context only
ever compares clock readings with each other, so the origin is arbitrary.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Protocol, runtime_checkable

MonotonicFn = Callable[[], float]


@runtime_checkable
class MasterClock(Protocol):
    """Protocol implemented by clock providers."""

    def now_ms(self) -> float:
        """Return the current time in milliseconds."""


@dataclass
class RealTimeMasterClock:
    """Clock backed by a monotonic timer.

    Parameters
    ----------
    monotonic_fn:
        Injectable monotonic function returning seconds, defaults to
        :func:`time.perf_counter`.
    """

    monotonic_fn: MonotonicFn = field(default=time.perf_counter)

    def __post_init__(self) -> None:
        self._origin: float = self.monotonic_fn()

    def now_ms(self) -> float:
        elapsed = self.monotonic_fn() - self._origin
        if elapsed < 0.0:
            elapsed = 0.0
        return elapsed * 1000.0


class SteppedMasterClock:
    """Deterministic clock used for tests.

    Time advances only when :meth:`advance` is called.
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._current = start_ms
        self._lock = Lock()

    def now_ms(self) -> float:
        with self._lock:
            return self._current

    def advance(self, ms: float) -> float:
        """Advance the clock by ``ms`` (must be non-negative)."""
        if ms < 0.0:
            raise ValueError("ms must be non-negative")
        with self._lock:
            self._current += ms
            return self._current
