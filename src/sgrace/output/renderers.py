"""Rich renderers for live run output and ServiceResult summaries.

Each renderer writes to a Rich Console (backed by StringIO).  The caller
extracts the rendered text via ``get_output(console)``.

Results are dispatched by ``result.op`` in :func:`render_result`.
Unknown ops fall through to a generic key-value renderer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from sgrace.domain.commands import REPORTED_OPCODE, command_for_opcode
from sgrace.output.console import create_console, get_output

if TYPE_CHECKING:
    from pathlib import Path

    from rich.console import Console

    from sgrace.config.settings import SgRaceSettings
    from sgrace.domain.records import AnomalyEvent
    from sgrace.services.result import ServiceResult
    from sgrace.services.state import RunTally


# ── Live run output ───────────────────────────────────────────────────


def opcode_text(opcode: str) -> Text:
    """``0x0a  WRITE(6) (originally reported opcode)`` with styling."""
    text = Text(f"0x{opcode}")
    command = command_for_opcode(opcode)
    if command is None:
        return text
    if command.opcode == REPORTED_OPCODE:
        text.append(f"  {command.name} (originally reported opcode)", style="sg.opcode.reported")
    else:
        text.append(f"  {command.name}", style="sg.opcode.known")
    return text


def render_start(node: Path, settings: SgRaceSettings) -> str:
    """Banner printed once the device is ready and before threads start."""
    console = create_console()
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="sg.key")
    grid.add_column()
    grid.add_row("Device", str(node))
    grid.add_row("Diagnostics", str(settings.monitor.debug_path))
    grid.add_row("Workers", str(settings.workload.workers))
    grid.add_row("Iterations", str(settings.monitor.iterations))
    grid.add_row("Threshold", f"{settings.detector.threshold_ms} ms")
    grid.add_row("Evidence log", str(settings.evidence.log_path))
    console.print(Panel(grid, title="SCSI sg race reproducer", title_align="left"))
    return get_output(console).rstrip("\n")


def render_alert(event: AnomalyEvent, tally: RunTally, *, log_path: Path | str) -> str:
    """Banner for one detected anomaly."""
    console = create_console()
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="sg.key")
    grid.add_column()
    grid.add_row("Iteration", str(event.iteration))
    grid.add_row("Elapsed time", Text(f"{event.elapsed_ms} ms", style="sg.elapsed"))
    grid.add_row("Opcode", opcode_text(event.opcode))
    grid.add_row("Debug line", Text(event.line.strip()))
    grid.add_row("Logged to", Text(str(log_path), style="sg.path"))
    title = Text(f"BOGUS ELAPSED TIME DETECTED (#{tally.anomalies})", style="sg.alert")
    console.print(Panel(grid, title=title, title_align="left", border_style="sg.alert"))
    return get_output(console).rstrip("\n")


def render_progress(tally: RunTally, *, budget: int) -> str:
    """One-line progress report, annotated with the latest hit if any."""
    line = f"[Progress: {tally.iterations}/{budget} iterations, {tally.anomalies} anomalies found"
    hit = tally.latest_hit
    if hit is not None:
        line += f"; latest: iteration {hit.iteration} op=0x{hit.opcode} elapsed={hit.elapsed_ms}ms"
    return line + "]"


# ── Result rendering ──────────────────────────────────────────────────


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    """Render a ServiceResult to a styled string via Rich.

    Returns plain text (no ANSI) when Rich detects no terminal,
    which is the case inside Click's CliRunner and piped output.
    """
    console = create_console()

    if result.ok:
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result, console, verbose=verbose)
    else:
        _render_error(result, console, verbose=verbose)

    return get_output(console).rstrip("\n")


def render_quiet(result: ServiceResult) -> str:
    """Render minimal output for ``--quiet`` mode."""
    if not result.ok:
        msg = result.error.message if result.error else "Unknown error"
        return f"ERROR: {result.op} — {msg}"
    if "anomalies" in result.data:
        return str(result.data["anomalies"])
    return f"OK: {result.op}"


# ── Helpers ───────────────────────────────────────────────────────────


def _status_line(console: Console, result: ServiceResult) -> None:
    """Print the OK/ERROR status line."""
    label = Text("OK", style="sg.ok")
    op = Text(f"  {result.op}", style="sg.op")
    console.print(label, op, end="")
    console.print()


def _field(console: Console, key: str, value: Any) -> None:
    """Print a single indented key-value field."""
    k = Text(f"  {key}: ", style="sg.key")
    if key.endswith("path") or key == "device":
        v = Text(str(value), style="sg.path")
    else:
        v = Text(str(value))
    console.print(k, v, end="")
    console.print()


def _anomaly_table(items: list[dict[str, Any]]) -> Table:
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Line", justify="right", style="sg.key")
    table.add_column("Elapsed", justify="right", style="sg.elapsed")
    table.add_column("Opcode")
    table.add_column("Command")
    for item in items:
        table.add_row(
            str(item.get("line_number", "")),
            f"{item.get('elapsed_ms')} ms",
            f"0x{item.get('opcode')}",
            str(item.get("command") or ""),
        )
    return table


def _render_summary(console: Console, data: dict[str, Any], *, verbose: bool) -> None:
    for key in ("device", "iterations", "anomalies", "stop_reason", "log_path"):
        if key in data:
            _field(console, key, data[key])
    if verbose:
        for key in ("evidence_failures", "stragglers"):
            if key in data:
                _field(console, key, data[key])
    hit = data.get("first_hit")
    if hit:
        _field(console, "first_hit", f"iteration {hit['iteration']} op=0x{hit['opcode']} "
               f"elapsed={hit['elapsed_ms']}ms")


# ── Op renderers ──────────────────────────────────────────────────────


def _render_run(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render a reproduced run."""
    _status_line(console, result)
    console.print(Text("  BUG SUCCESSFULLY REPRODUCED", style="sg.ok"))
    _render_summary(console, result.data, verbose=verbose)
    if verbose and result.meta and "duration_ms" in result.meta:
        _field(console, "duration_ms", result.meta["duration_ms"])
    log_path = result.data.get("log_path")
    if log_path:
        console.print(Text(f"  Inspect the evidence with: less {log_path}", style="dim"))


def _render_scan(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render anomalies found in a saved dump."""
    _status_line(console, result)
    d = result.data
    _field(console, "path", d.get("path", ""))
    _field(console, "lines", d.get("lines", 0))
    _field(console, "anomalies", d.get("anomalies", 0))
    if d.get("truncated"):
        console.print(Text("  dump exceeded the capture limit and was truncated", style="sg.warning"))
    items = d.get("items") or []
    if items:
        console.print(_anomaly_table(items))
        if verbose:
            for item in items:
                console.print(Text(f"    {item['line']}", style="dim"))


def _render_generic(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Fallback renderer: status line + all data as key-value pairs."""
    _status_line(console, result)
    for key, value in result.data.items():
        _field(console, key, value)


def _render_error(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    label = Text("ERROR", style="sg.error")
    op = Text(f"  {result.op}", style="sg.op")
    sep = Text(" — ")
    console.print(label, op, sep, msg)
    if result.op == "run" and result.data:
        _render_summary(console, result.data, verbose=verbose)
    if verbose and err and err.detail:
        for key, value in err.detail.items():
            _field(console, key, value)


_OP_RENDERERS: dict[str, Any] = {
    "run": _render_run,
    "scan": _render_scan,
}
