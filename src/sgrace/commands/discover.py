"""Command: locate the scsi_debug sg node."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from sgrace.commands._base import SgCommand

if TYPE_CHECKING:
    from sgrace.commands._context import AppContext


@click.command(
    cls=SgCommand,
    examples="""\
  sgrace discover
  sgrace --json discover""",
)
@click.pass_obj
def discover(app: AppContext) -> None:
    """Print the /dev/sgN node backed by scsi_debug."""
    from sgrace.services.harness import HarnessService

    app.emit(HarnessService(app.settings).discover())
