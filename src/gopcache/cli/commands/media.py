"""
Media commands: inspect a file's GOP index and simulate playback over it.

Both commands run the execution context in colocated mode with an inline
executor, so the output is deterministic. ``play`` drives a stepped clock by
the cursor step, which fires decode debounce timers as playback advances.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Iterator, NoReturn

import typer

from gopcache.adapters.pyav_backend import PyAVBackend
from gopcache.adapters.range_fetcher import fetcher_for
from gopcache.infra.exceptions import GopCacheError
from gopcache.infra.logging import get_logger
from gopcache.infra.range_store import RangeStore
from gopcache.infra.settings import Settings, load_settings
from gopcache.runtime.clock import SteppedMasterClock
from gopcache.runtime.config import DecoderConfig
from gopcache.runtime.execution_context import DecodeExecutionContext, InlineExecutor
from gopcache.runtime.scheduler import DecodeScheduler

_logger = get_logger(__name__)


def _format_json_output(result: dict) -> str:
    return json.dumps(result, indent=2, default=str)


@contextmanager
def open_context(
    url: str, settings: Settings, config: DecoderConfig, clock: SteppedMasterClock
) -> Iterator[DecodeExecutionContext]:
    """Colocated context wired to the real fetcher and PyAV backend. Stopped on exit."""
    store = RangeStore.from_url(settings.range_cache_url) if config.range_cache else None
    try:
        with DecodeExecutionContext(
            PyAVBackend(),
            fetcher_for(url, timeout=settings.http_timeout),
            config,
            range_store=store,
            clock=clock,
            executor=InlineExecutor(),
        ) as context:
            yield context
    finally:
        if store is not None:
            store.dispose()


def _fail(message: str, json_output: bool) -> NoReturn:
    if json_output:
        typer.echo(_format_json_output({"status": "error", "errors": [message]}))
    else:
        typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _describe(scheduler: DecodeScheduler) -> dict[str, Any]:
    meta = scheduler.meta
    return {
        "status": "ok",
        "url": scheduler.url,
        "meta": meta.to_dict() if meta else None,
        "gops": [gop.to_dict() for gop in scheduler.gops],
    }


def inspect(
    url: str = typer.Argument(..., help="Media URL or local path"),
    gop_min_duration: float = typer.Option(None, "--gop-min-duration", help="Merge GOPs shorter than this (ms)"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Load metadata and print track info and the GOP index."""
    settings = load_settings()
    clock = SteppedMasterClock()
    try:
        config = DecoderConfig.from_settings(settings, gop_min_duration=gop_min_duration)
    except ValueError as e:
        _fail(str(e), json_output)

    try:
        with open_context(url, settings, config, clock) as context, DecodeScheduler(url, context) as scheduler:
            scheduler.set_time(0.0)
            scheduler.poll_notifications()
            if scheduler.error is not None:
                _fail(str(scheduler.error), json_output)
            result = _describe(scheduler)
    except GopCacheError as e:
        _logger.error("inspect_failed", url=url, error=str(e))
        _fail(str(e), json_output)

    if json_output:
        typer.echo(_format_json_output(result))
        return
    meta = result["meta"]
    typer.echo(f"URL: {url}")
    typer.echo(f"Duration: {meta['duration']:.1f} ms, size: {meta['file_size']} bytes")
    if meta["video"]:
        v = meta["video"]
        typer.echo(f"Video: {v['codec']} {v['display_width']}x{v['display_height']} rotation={v['rotation']}")
    if meta["audio"]:
        a = meta["audio"]
        typer.echo(f"Audio: {a['codec']} {a['number_of_channels']}ch {a['sample_rate']}Hz")
    typer.echo(f"GOPs: {len(result['gops'])}")
    for gop in result["gops"]:
        typer.echo(
            f"  #{gop['index']:<4} {gop['timestamp']:>10.1f} ms  +{gop['duration']:.1f} ms"
            f"  audio {gop['audio_timestamp']:.1f}+{gop['audio_duration']:.1f}"
        )


def play(
    url: str = typer.Argument(..., help="Media URL or local path"),
    start: float = typer.Option(0.0, "--start", help="First cursor position (ms)"),
    end: float = typer.Option(..., "--end", help="Last cursor position (ms)"),
    step: float = typer.Option(..., "--step", help="Cursor step (ms)"),
    decode_next: float = typer.Option(None, "--decode-next", help="Look-ahead window (ms)"),
    release_prev: float = typer.Option(None, "--release-prev", help="Look-behind window (ms)"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Move one playback cursor across [start, end] and report the resident window."""
    if step <= 0:
        _fail("--step must be greater than zero", json_output)
    settings = load_settings()
    clock = SteppedMasterClock()
    try:
        config = DecoderConfig.from_settings(
            settings, decode_next_duration=decode_next, release_prev_duration=release_prev
        )
    except ValueError as e:
        _fail(str(e), json_output)

    steps: list[dict[str, Any]] = []
    try:
        with open_context(url, settings, config, clock) as context, DecodeScheduler(url, context) as scheduler:
            t = start
            while t <= end:
                scheduler.set_time(t)
                clock.advance(step)
                context.run_pending()
                notifications = scheduler.poll_notifications()
                if scheduler.error is not None:
                    _fail(str(scheduler.error), json_output)
                frame = scheduler.get_frame_by_time(t)
                steps.append(
                    {
                        "time": t,
                        "active_gop": scheduler.active_gop_index,
                        "held": sorted(scheduler.held_gops),
                        "notifications": [n.to_dict() for n in notifications],
                        "frame": None if frame is None else frame.timestamp,
                    }
                )
                t += step
    except GopCacheError as e:
        _logger.error("play_failed", url=url, error=str(e))
        _fail(str(e), json_output)

    if json_output:
        typer.echo(_format_json_output({"status": "ok", "url": url, "steps": steps}))
        return
    for entry in steps:
        kinds = ", ".join(
            f"{n['kind']}" + (f"#{n['gop_index']}" if n["gop_index"] is not None else "")
            for n in entry["notifications"]
        )
        frame = "-" if entry["frame"] is None else f"{entry['frame']:.1f}"
        typer.echo(
            f"t={entry['time']:>10.1f}  active={entry['active_gop']:<4} held={entry['held']}"
            f"  frame={frame}  {kinds}"
        )
