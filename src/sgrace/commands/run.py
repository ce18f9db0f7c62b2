"""Command: run the stress harness against the scsi_debug sg node."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from sgrace.commands._base import SgCommand

if TYPE_CHECKING:
    from sgrace.commands._context import AppContext


@click.command(
    cls=SgCommand,
    examples="""\
  sudo sgrace run
  sudo sgrace run --workers 16 --iterations 5000
  sgrace run --device /dev/sg3 --no-setup
  sgrace run --threshold 5000 --log-file race.log
  sgrace --json run""",
)
@click.option("-w", "--workers", type=click.IntRange(min=1), default=None, help="Issuer threads.")
@click.option(
    "-n", "--iterations", type=click.IntRange(min=1), default=None, help="Monitor iterations."
)
@click.option(
    "--threshold",
    type=click.IntRange(min=0),
    default=None,
    help="Implausible elapsed time in ms.",
)
@click.option("--device", type=click.Path(path_type=Path), default=None, help="Explicit sg node.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Evidence log path.",
)
@click.option(
    "--setup/--no-setup",
    default=None,
    help="Reload the scsi_debug module before the run.",
)
@click.option(
    "--teardown/--no-teardown",
    default=None,
    help="Unload the module after the run.",
)
@click.pass_obj
def run(
    app: AppContext,
    workers: int | None,
    iterations: int | None,
    threshold: int | None,
    device: Path | None,
    log_file: Path | None,
    setup: bool | None,
    teardown: bool | None,
) -> None:
    """Drive the device from many threads while watching sg debug output.

    Exits 0 when at least one bogus elapsed time was captured, 1 otherwise.
    """
    from sgrace.output.renderers import render_alert, render_progress, render_start
    from sgrace.services.harness import HarnessService

    settings = (
        app.settings.with_overrides("workload", workers=workers)
        .with_overrides("monitor", iterations=iterations)
        .with_overrides("detector", threshold_ms=threshold)
        .with_overrides("evidence", log_path=log_file)
        .with_overrides("device", path=device, setup=setup, teardown=teardown)
    )
    hooks: dict[str, Any] = {}
    if app.live_output:
        log_path = settings.evidence.log_path
        budget = settings.monitor.iterations
        hooks = {
            "on_start": lambda node, s: click.echo(render_start(node, s)),
            "on_anomaly": lambda event, tally: click.echo(
                render_alert(event, tally, log_path=log_path)
            ),
            "on_progress": lambda tally: click.echo(render_progress(tally, budget=budget)),
        }

    app.emit(HarnessService(settings).run(**hooks))
