"""Tests for the discover CLI command."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from sgrace.cli import cli
from sgrace.infrastructure.device import DeviceNotFoundError


class _Locator:
    node: Path | None = None

    def discover(self) -> Path:
        if self.node is None:
            raise DeviceNotFoundError("scsi_debug device not found")
        return self.node


@pytest.fixture
def locator(monkeypatch: pytest.MonkeyPatch) -> type[_Locator]:
    monkeypatch.setattr("sgrace.services.harness.DeviceLocator", _Locator)
    monkeypatch.setattr(_Locator, "node", None)
    return _Locator


class TestDiscoverCommand:
    def test_found(self, cli_runner: CliRunner, locator: type[_Locator]) -> None:
        locator.node = Path("/dev/sg4")
        result = cli_runner.invoke(cli, ["--json", "discover"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["data"]["device"] == "/dev/sg4"

    def test_not_found(self, cli_runner: CliRunner, locator: type[_Locator]) -> None:
        result = cli_runner.invoke(cli, ["discover"])
        assert result.exit_code == 1
        assert "scsi_debug device not found" in result.output
