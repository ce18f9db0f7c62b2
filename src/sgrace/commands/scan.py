"""Command: scan a saved diagnostic dump for bogus elapsed times."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from sgrace.commands._base import SgCommand

if TYPE_CHECKING:
    from sgrace.commands._context import AppContext


@click.command(
    cls=SgCommand,
    examples="""\
  sgrace scan sg_debug.txt
  sgrace scan --threshold 2000 sg_debug.txt
  cat /proc/scsi/sg/debug > dump.txt && sgrace --json scan dump.txt""",
)
@click.argument("dump", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--threshold",
    type=click.IntRange(min=0),
    default=None,
    help="Implausible elapsed time in ms.",
)
@click.pass_obj
def scan(app: AppContext, dump: Path, threshold: int | None) -> None:
    """Report anomalous records in a captured sg debug snapshot."""
    from sgrace.services.harness import HarnessService

    settings = app.settings.with_overrides("detector", threshold_ms=threshold)
    app.emit(HarnessService(settings).scan_file(dump))
