from __future__ import annotations

import logging

import pytest

from gopcache.runtime.clock import SteppedMasterClock
from gopcache.runtime.config import DecoderConfig
from gopcache.runtime.execution_context import DecodeExecutionContext, InlineExecutor
from tests.util.fakes import FakeMediaBackend, FakeMediaSource, FrameLedger, InMemoryFetcher

MEDIA_URL = "https://media.example.com/clip.mp4"


@pytest.fixture
def clock() -> SteppedMasterClock:
    return SteppedMasterClock()


@pytest.fixture
def ledger() -> FrameLedger:
    return FrameLedger()


@pytest.fixture
def fetcher() -> InMemoryFetcher:
    return InMemoryFetcher({MEDIA_URL: b"\x00" * 4096})


@pytest.fixture
def make_context(clock, fetcher):
    """Factory for colocated contexts over a fake media source."""
    contexts: list[DecodeExecutionContext] = []

    def _make(source: FakeMediaSource, config: DecoderConfig | None = None, **kwargs) -> DecodeExecutionContext:
        context = DecodeExecutionContext(
            kwargs.pop("backend", None) or FakeMediaBackend(source),
            kwargs.pop("fetcher", None) or fetcher,
            config or DecoderConfig(),
            clock=clock,
            executor=InlineExecutor(),
            **kwargs,
        )
        contexts.append(context)
        return context

    yield _make
    for context in contexts:
        context.stop()


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """Undo configure_logging so a handler bound to a test's stderr does not outlive it."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler.get_name() == "gopcache":
            root.removeHandler(handler)
    root.setLevel(level)
