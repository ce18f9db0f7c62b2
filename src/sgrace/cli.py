"""Root CLI group for sgrace with global flags and command registration."""

from __future__ import annotations

import click

from sgrace import __version__
from sgrace.commands import register_commands
from sgrace.commands._base import SgGroup
from sgrace.commands._context import AppContext
from sgrace.config.settings import SgRaceSettings


@click.group(
    cls=SgGroup,
    invoke_without_command=True,
    examples="""\
  sudo sgrace run
  sgrace -v --log-json run --no-setup --device /dev/sg2
  sgrace scan dump.txt""",
)
@click.version_option(version=__version__, prog_name="sgrace")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output.")
@click.option("-q", "--quiet", is_flag=True, help="Minimal output.")
@click.option("-v", "--verbose", is_flag=True, help="Detailed output with debug info.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    quiet: bool,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
) -> None:
    """sgrace — reproduce the sg elapsed-time race and capture evidence."""
    ctx.ensure_object(dict)
    settings = SgRaceSettings.from_cli(
        config_path=config_path,
        json_output=json_output,
        quiet=quiet,
        verbose=verbose,
        log_json=log_json,
    )
    ctx.obj = AppContext(settings)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
