"""Rich Console factory and theme for sgrace output.

Creates Console instances that render to a StringIO buffer, preserving
the ``render_*() -> str`` contract.  In non-TTY environments (tests,
pipes) Rich automatically disables color codes.
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

SG_THEME = Theme(
    {
        "sg.ok": "bold green",
        "sg.error": "bold red",
        "sg.warning": "bold yellow",
        "sg.op": "bold cyan",
        "sg.key": "dim",
        "sg.path": "dim",
        "sg.title": "bold",
        "sg.alert": "bold red",
        "sg.elapsed": "magenta",
        "sg.opcode.reported": "bold red",
        "sg.opcode.known": "yellow",
    }
)


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer.

    Args:
        no_color: Disable ANSI escape codes (used in tests).
        width: Override terminal width (useful for consistent test output).
    """
    return Console(
        file=StringIO(),
        theme=SG_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 100,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()
