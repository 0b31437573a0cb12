"""
Main CLI application.

``gopcache inspect`` and ``gopcache play`` drive the decode cache against a
real media URL; ``gopcache ranges`` manages the persistent range cache.
"""

from __future__ import annotations

import typer

from gopcache.infra.logging import configure_logging
from gopcache.infra.settings import load_settings

from .commands import media, ranges
from .router import CliRouter

app = typer.Typer(help="gopcache: playback-oriented GOP decode cache")

router = CliRouter(app)
router.register("ranges", ranges.app, help_text="Persistent byte-range cache operations")

app.command("inspect")(media.inspect)
app.command("play")(media.play)


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Override GOPCACHE_LOG_LEVEL"),
    log_json: bool = typer.Option(False, "--log-json", help="Render logs as JSON"),
) -> None:
    """Configure logging once for every command."""
    settings = load_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_output=log_json or settings.log_json,
    )


if __name__ == "__main__":
    app()
