"""Subcommand modules for sgrace.

Provides register_commands() which uses deferred imports to keep
``sgrace --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all standalone commands on the root CLI group."""
    from sgrace.commands.discover import discover
    from sgrace.commands.run import run
    from sgrace.commands.scan import scan

    cli.add_command(run)
    cli.add_command(scan)
    cli.add_command(discover)
