"""Shared pytest fixtures and test helpers for sgrace tests."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

import pytest
from click.testing import CliRunner

from sgrace.config.settings import SgRaceSettings
from sgrace.domain.commands import ScsiCommand
from sgrace.domain.records import Snapshot


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> SgRaceSettings:
    """Default settings isolated from any sgrace.toml or SGRACE_* env vars."""
    monkeypatch.delenv("SGRACE_CONFIG", raising=False)
    return SgRaceSettings.from_cli(config_path=str(tmp_path / "missing.toml"))


# ---------------------------------------------------------------------------
# Shared test helpers
# ---------------------------------------------------------------------------


def make_snapshot(text: str, *, source: str = "/proc/scsi/sg/debug") -> Snapshot:
    """Wrap *text* in a Snapshot captured now."""
    return Snapshot(text=text, captured_at=datetime.now(), source=source)


def debug_line(elapsed: int, opcode: str | None = "2a", *, timeout: int = 60000) -> str:
    """One sg debug record line in the kernel's layout."""
    line = f"      rb>> acq=1 duration=0 t_o/elap={timeout}/{elapsed}ms sgat=0"
    if opcode is not None:
        line += f" op=0x{opcode}"
    return line


class FakeTransport:
    """Command transport that records submissions instead of issuing ioctls."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.submitted: list[ScsiCommand] = []
        self.closed = False
        self._lock = threading.Lock()

    def submit(self, command: ScsiCommand) -> None:
        with self._lock:
            self.submitted.append(command)
        if self.fail:
            raise OSError(5, "Input/output error")

    def close(self) -> None:
        self.closed = True


class ScriptedSampler:
    """Sampler replaying a fixed sequence of snapshots, then repeating the last.

    ``None`` entries simulate a busy diagnostic source.
    """

    def __init__(self, texts: Iterable[str | None]) -> None:
        self._texts = list(texts)
        self.calls = 0

    def sample(self) -> Snapshot | None:
        index = min(self.calls, len(self._texts) - 1)
        self.calls += 1
        text = self._texts[index]
        return None if text is None else make_snapshot(text)
