"""Tests for the scan CLI command."""

from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from sgrace.cli import cli
from tests.conftest import debug_line


def _dump(tmp_path: Path, *lines: str) -> Path:
    path = tmp_path / "dump.txt"
    path.write_text("\n".join(lines) + "\n")
    return path


class TestScanCommand:
    def test_reports_anomalies(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        dump = _dump(tmp_path, debug_line(12), debug_line(-7, "0a"))
        result = cli_runner.invoke(cli, ["-c", str(tmp_path / "none.toml"), "scan", str(dump)])
        assert result.exit_code == 0, result.output
        assert "OK" in result.output
        assert "WRITE(6)" in result.output
        assert "-7 ms" in result.output

    def test_json(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        dump = _dump(tmp_path, debug_line(40000, "08"))
        result = cli_runner.invoke(
            cli, ["-c", str(tmp_path / "none.toml"), "--json", "scan", str(dump)]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["data"]["anomalies"] == 1
        assert data["data"]["items"][0]["opcode"] == "08"

    def test_clean_dump(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        dump = _dump(tmp_path, debug_line(12))
        result = cli_runner.invoke(cli, ["-c", str(tmp_path / "none.toml"), "scan", str(dump)])
        assert result.exit_code == 1
        assert "No anomalous records found" in result.output

    def test_threshold(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        dump = _dump(tmp_path, debug_line(12))
        result = cli_runner.invoke(
            cli,
            ["-c", str(tmp_path / "none.toml"), "-q", "scan", "--threshold", "5", str(dump)],
        )
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "1"

    def test_missing_file(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        result = cli_runner.invoke(
            cli, ["-c", str(tmp_path / "none.toml"), "scan", str(tmp_path / "gone.txt")]
        )
        assert result.exit_code == 1
        assert "Cannot read diagnostic dump" in result.output
