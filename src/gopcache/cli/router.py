"""
CLI Router: command group registration.

Each command group is a Typer app that owns its subcommands; the router adds
it to the root application and refuses duplicate names.
"""

from __future__ import annotations

from typing import Any

import typer


class CliRouter:
    """Registers Typer command groups on a root application."""

    def __init__(self, root_app: typer.Typer) -> None:
        self.root_app = root_app
        self._registered_groups: dict[str, dict[str, Any]] = {}

    def register(self, name: str, command_group: typer.Typer, *, help_text: str | None = None) -> None:
        if name in self._registered_groups:
            raise ValueError(f"Command group '{name}' is already registered")
        self.root_app.add_typer(command_group, name=name, help=help_text)
        self._registered_groups[name] = {
            "name": name,
            "help": help_text,
            "command_group": command_group,
        }
