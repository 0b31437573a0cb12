"""
Persistent range cache commands.
"""

from __future__ import annotations

import json

import typer

from gopcache.infra.range_store import RangeStore
from gopcache.infra.settings import load_settings

app = typer.Typer(name="ranges", help="Persistent byte-range cache operations")


def _open_store() -> RangeStore:
    return RangeStore.from_url(load_settings().range_cache_url)


@app.command("stats")
def stats(json_output: bool = typer.Option(False, "--json", help="Output in JSON format")):
    """Show how many ranges are stored and their total size."""
    store = _open_store()
    try:
        result = store.stats()
    finally:
        store.dispose()
    if json_output:
        typer.echo(json.dumps(result, indent=2))
        return
    typer.echo(f"Ranges: {result['count']}")
    typer.echo(f"Bytes: {result['size']}")
    for url in result["urls"]:
        typer.echo(f"  {url}")


@app.command("clear")
def clear(url: str = typer.Option(None, "--url", help="Only clear ranges of this URL")):
    """Delete stored ranges."""
    store = _open_store()
    try:
        removed = store.clear(url)
    finally:
        store.dispose()
    typer.echo(f"Removed {removed} cached ranges")
