"""Tests for HarnessService — end-to-end runs against fake devices."""

from __future__ import annotations

from pathlib import Path

import pytest

from sgrace.config.settings import SgRaceSettings
from sgrace.infrastructure.device import DeviceNotFoundError, ProvisioningError
from sgrace.services.detector import AnomalyDetector
from sgrace.services.harness import NO_ANOMALY_MESSAGE, HarnessService, event_payload
from tests.conftest import FakeTransport, debug_line, make_snapshot

ANOMALOUS_DUMP = "\n".join(
    [
        "max_active_device=1  def_reserved_size=32768",
        debug_line(12),
        debug_line(-3, "0a"),
        debug_line(20, "08"),
    ]
)
CLEAN_DUMP = "\n".join([debug_line(12), debug_line(9000, "08")])


class FakeLocator:
    def __init__(self, node: Path | None = None) -> None:
        self.node = node
        self.calls = 0

    def discover(self) -> Path:
        self.calls += 1
        if self.node is None:
            raise DeviceNotFoundError("scsi_debug device not found")
        return self.node


class BreakingSampler:
    """Returns the scripted snapshots in order, then raises."""

    texts: list[str] = []

    def __init__(self, _path: Path, *, max_bytes: int) -> None:
        self._pending = list(self.texts)

    def sample(self):
        if not self._pending:
            raise RuntimeError("sampler bug")
        return make_snapshot(self._pending.pop(0))


class FakeProvisioner:
    def __init__(self, node: Path | None = None) -> None:
        self.node = node
        self.provisioned = 0
        self.torn_down = 0

    def provision(self) -> Path:
        self.provisioned += 1
        if self.node is None:
            raise ProvisioningError("Failed to load scsi_debug: permission denied")
        return self.node

    def teardown(self) -> None:
        self.torn_down += 1


@pytest.fixture
def node(tmp_path: Path) -> Path:
    path = tmp_path / "sg7"
    path.write_text("")
    return path


def _settings(base: SgRaceSettings, tmp_path: Path, dump: str, **device: object) -> SgRaceSettings:
    debug = tmp_path / "debug"
    debug.write_text(dump)
    return (
        base.with_overrides("workload", workers=2, issue_delay=0.001)
        .with_overrides("monitor", iterations=5, debug_path=debug, progress_every=2)
        .with_overrides("evidence", log_path=tmp_path / "bug_find.log", fsync=False)
        .with_overrides("device", **device)
    )


class TestRun:
    def test_reproduced(self, settings: SgRaceSettings, tmp_path: Path, node: Path) -> None:
        cfg = _settings(settings, tmp_path, ANOMALOUS_DUMP, path=node, setup=False)
        transports: list[FakeTransport] = []
        started: list[Path] = []
        alerts: list[int] = []
        progress: list[int] = []

        def opener(path: Path) -> FakeTransport:
            assert path == node
            transport = FakeTransport()
            transports.append(transport)
            return transport

        result = HarnessService(cfg, open_transport=opener).run(
            on_start=lambda n, _s: started.append(n),
            on_anomaly=lambda _e, tally: alerts.append(tally.anomalies),
            on_progress=lambda tally: progress.append(tally.iterations),
        )

        assert result.ok
        assert result.op == "run"
        assert result.data["anomalies"] == 5
        assert result.data["iterations"] == 5
        assert result.data["stop_reason"] == "budget"
        assert result.data["device"] == str(node)
        assert result.data["first_hit"]["iteration"] == 0
        assert result.data["first_hit"]["opcode"] == "0a"
        assert result.data["first_hit"]["command"] == "WRITE(6)"
        assert started == [node]
        assert alerts == [1, 2, 3, 4, 5]
        assert progress == [2, 4]
        assert len(transports) == 2
        assert all(t.closed for t in transports)

        log = (tmp_path / "bug_find.log").read_text()
        assert log.startswith("Bug Detection Log")
        assert log.count("ANOMALY DETECTED") == 5

    def test_no_anomalies(self, settings: SgRaceSettings, tmp_path: Path, node: Path) -> None:
        cfg = _settings(settings, tmp_path, CLEAN_DUMP, path=node, setup=False)
        result = HarnessService(cfg, open_transport=lambda _n: FakeTransport()).run()
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "NO_ANOMALIES"
        assert result.error.message == NO_ANOMALY_MESSAGE
        assert result.data["iterations"] == 5
        assert result.data["anomalies"] == 0
        assert "ANOMALY DETECTED" not in (tmp_path / "bug_find.log").read_text()

    def test_duration_in_meta(self, settings: SgRaceSettings, tmp_path: Path, node: Path) -> None:
        cfg = _settings(settings, tmp_path, ANOMALOUS_DUMP, path=node, setup=False)
        result = HarnessService(cfg, open_transport=lambda _n: FakeTransport()).run()
        assert result.meta is not None
        assert result.meta["duration_ms"] >= 0

    def test_monitor_failure_after_hit_still_reproduced(
        self,
        settings: SgRaceSettings,
        tmp_path: Path,
        node: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(BreakingSampler, "texts", [debug_line(-5, "0a")])
        monkeypatch.setattr("sgrace.services.harness.DiagnosticSampler", BreakingSampler)
        cfg = _settings(settings, tmp_path, CLEAN_DUMP, path=node, setup=False)
        result = HarnessService(cfg, open_transport=lambda _n: FakeTransport()).run()
        assert result.ok
        assert result.error is None
        assert result.data["anomalies"] == 1
        assert result.data["stop_reason"] == "fatal"
        assert any("sampler bug" in w for w in result.warnings)

    def test_monitor_failure_without_hit(
        self,
        settings: SgRaceSettings,
        tmp_path: Path,
        node: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(BreakingSampler, "texts", [debug_line(12)])
        monkeypatch.setattr("sgrace.services.harness.DiagnosticSampler", BreakingSampler)
        cfg = _settings(settings, tmp_path, CLEAN_DUMP, path=node, setup=False)
        result = HarnessService(cfg, open_transport=lambda _n: FakeTransport()).run()
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "MONITOR_FAILED"
        assert "sampler bug" in result.error.message

    def test_missing_explicit_device(self, settings: SgRaceSettings, tmp_path: Path) -> None:
        cfg = _settings(settings, tmp_path, ANOMALOUS_DUMP, path=tmp_path / "sg99", setup=False)
        started: list[Path] = []
        result = HarnessService(cfg, open_transport=lambda _n: FakeTransport()).run(
            on_start=lambda n, _s: started.append(n)
        )
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "SETUP_FAILED"
        assert result.error.detail["type"] == "DeviceNotFoundError"
        assert started == []

    def test_provisions_and_tears_down(
        self, settings: SgRaceSettings, tmp_path: Path, node: Path
    ) -> None:
        cfg = _settings(settings, tmp_path, ANOMALOUS_DUMP)
        provisioner = FakeProvisioner(node)
        svc = HarnessService(
            cfg,
            provisioner=provisioner,  # type: ignore[arg-type]
            open_transport=lambda _n: FakeTransport(),
        )
        assert svc.run().ok
        assert provisioner.provisioned == 1
        assert provisioner.torn_down == 1

    def test_teardown_disabled(self, settings: SgRaceSettings, tmp_path: Path, node: Path) -> None:
        cfg = _settings(settings, tmp_path, ANOMALOUS_DUMP, teardown=False)
        provisioner = FakeProvisioner(node)
        HarnessService(
            cfg,
            provisioner=provisioner,  # type: ignore[arg-type]
            open_transport=lambda _n: FakeTransport(),
        ).run()
        assert provisioner.torn_down == 0

    def test_provisioning_failure(self, settings: SgRaceSettings, tmp_path: Path) -> None:
        cfg = _settings(settings, tmp_path, ANOMALOUS_DUMP)
        provisioner = FakeProvisioner()
        result = HarnessService(
            cfg,
            provisioner=provisioner,  # type: ignore[arg-type]
            open_transport=lambda _n: FakeTransport(),
        ).run()
        assert result.error is not None
        assert result.error.code == "SETUP_FAILED"
        assert "permission denied" in result.error.message
        assert provisioner.torn_down == 0

    def test_discovery_without_setup(
        self, settings: SgRaceSettings, tmp_path: Path, node: Path
    ) -> None:
        cfg = _settings(settings, tmp_path, ANOMALOUS_DUMP, setup=False)
        locator = FakeLocator(node)
        provisioner = FakeProvisioner(node)
        result = HarnessService(
            cfg,
            locator=locator,  # type: ignore[arg-type]
            provisioner=provisioner,  # type: ignore[arg-type]
            open_transport=lambda _n: FakeTransport(),
        ).run()
        assert result.ok
        assert locator.calls == 1
        assert provisioner.provisioned == 0
        assert provisioner.torn_down == 0

    def test_unwritable_log_warns(self, settings: SgRaceSettings, tmp_path: Path, node: Path) -> None:
        cfg = _settings(settings, tmp_path, ANOMALOUS_DUMP, path=node, setup=False)
        cfg = cfg.with_overrides("evidence", log_path=tmp_path / "missing" / "bug_find.log")
        result = HarnessService(cfg, open_transport=lambda _n: FakeTransport()).run()
        assert result.ok
        assert result.data["anomalies"] == 5
        assert len(result.warnings) == 1


class TestDiscover:
    def test_found(self, settings: SgRaceSettings, node: Path) -> None:
        svc = HarnessService(settings, locator=FakeLocator(node))  # type: ignore[arg-type]
        result = svc.discover()
        assert result.ok
        assert result.data == {"device": str(node)}

    def test_not_found(self, settings: SgRaceSettings) -> None:
        result = HarnessService(settings, locator=FakeLocator()).discover()  # type: ignore[arg-type]
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "SETUP_FAILED"


class TestScanFile:
    def test_anomalies(self, settings: SgRaceSettings, tmp_path: Path) -> None:
        dump = tmp_path / "dump.txt"
        dump.write_text(ANOMALOUS_DUMP)
        result = HarnessService(settings).scan_file(dump)
        assert result.ok
        assert result.data["lines"] == 4
        assert result.data["anomalies"] == 1
        item = result.data["items"][0]
        assert item["line_number"] == 3
        assert item["elapsed_ms"] == -3
        assert item["command"] == "WRITE(6)"

    def test_threshold_override(self, settings: SgRaceSettings, tmp_path: Path) -> None:
        dump = tmp_path / "dump.txt"
        dump.write_text(CLEAN_DUMP)
        cfg = settings.with_overrides("detector", threshold_ms=5000)
        result = HarnessService(cfg).scan_file(dump)
        assert result.ok
        assert result.data["threshold_ms"] == 5000
        assert result.data["items"][0]["elapsed_ms"] == 9000

    def test_clean(self, settings: SgRaceSettings, tmp_path: Path) -> None:
        dump = tmp_path / "dump.txt"
        dump.write_text(CLEAN_DUMP)
        result = HarnessService(settings).scan_file(dump)
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "NO_ANOMALIES"
        assert result.data["anomalies"] == 0

    def test_unreadable(self, settings: SgRaceSettings, tmp_path: Path) -> None:
        result = HarnessService(settings).scan_file(tmp_path / "absent.txt")
        assert result.error is not None
        assert result.error.code == "UNREADABLE"


class TestEventPayload:
    def test_unknown_opcode(self) -> None:
        event = next(AnomalyDetector().scan(make_snapshot(debug_line(-1, None))))
        payload = event_payload(event)
        assert payload["opcode"] == "??"
        assert payload["command"] is None
        assert payload["line_number"] == 1
