"""HarnessService — settings in, ServiceResult out.

Wraps one stress run end to end: evidence log reset, device setup, the
orchestrated run, teardown, and the summary.  Setup failures end the
operation before any thread is spawned.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from sgrace.domain.commands import command_for_opcode
from sgrace.domain.records import AnomalyEvent, Snapshot
from sgrace.infrastructure.device import (
    DeviceLocator,
    DeviceNotFoundError,
    ModuleProvisioner,
    SetupError,
)
from sgrace.infrastructure.procfs import DiagnosticSampler
from sgrace.infrastructure.sg_io import CommandTransport, SgDevice
from sgrace.services.detector import AnomalyDetector
from sgrace.services.evidence import EvidenceRecorder
from sgrace.services.orchestrator import (
    AlertHook,
    ProgressHook,
    RunOutcome,
    WorkloadOrchestrator,
    shutdown_on_signals,
)
from sgrace.services.result import ServiceError, ServiceResult

if TYPE_CHECKING:
    from sgrace.config.settings import SgRaceSettings

logger = structlog.get_logger(__name__)

StartHook = Callable[[Path, "SgRaceSettings"], None]
TransportOpener = Callable[[Path], CommandTransport]

NO_ANOMALY_MESSAGE = (
    "No anomalies detected in this run; race conditions are timing-dependent, try again"
)


def event_payload(event: AnomalyEvent) -> dict[str, Any]:
    """Serializable view of one anomaly."""
    command = command_for_opcode(event.opcode)
    return {
        "iteration": event.iteration,
        "elapsed_ms": event.elapsed_ms,
        "opcode": event.opcode,
        "command": command.name if command else None,
        "line_number": event.record.line_number,
        "line": event.line,
    }


class HarnessService:
    """Run the stress harness or scan saved diagnostic dumps.

    Parameters:
        settings: Resolved settings.
        provisioner: Module loader (built from ``settings.device`` by default).
        locator: Discovery used when no explicit path is configured.
        open_transport: Opens one issuer handle on the resolved node
            (an :class:`SgDevice` by default).
    """

    def __init__(
        self,
        settings: SgRaceSettings,
        *,
        provisioner: ModuleProvisioner | None = None,
        locator: DeviceLocator | None = None,
        open_transport: TransportOpener | None = None,
    ) -> None:
        self._settings = settings
        self._open_transport = open_transport or self._open_sg_device
        self._locator = locator or DeviceLocator()
        device = settings.device
        self._provisioner = provisioner or ModuleProvisioner(
            device.module,
            device.module_params,
            settle_seconds=device.settle_seconds,
            locator=self._locator,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def discover(self) -> ServiceResult:
        """Locate the scsi_debug sg node without touching the module."""
        try:
            node = self._locator.discover()
        except SetupError as exc:
            return self._setup_failed("discover", exc)
        return ServiceResult(ok=True, op="discover", data={"device": str(node)})

    def run(
        self,
        *,
        on_start: StartHook | None = None,
        on_anomaly: AlertHook | None = None,
        on_progress: ProgressHook | None = None,
    ) -> ServiceResult:
        """Execute one stress run and classify the outcome.

        ``ok`` is True when at least one anomaly was recorded.
        """
        settings = self._settings
        started = time.monotonic()
        recorder = EvidenceRecorder(settings.evidence.log_path, fsync=settings.evidence.fsync)
        recorder.initialize(str(settings.monitor.debug_path))

        provisioned = False
        try:
            node = self.prepare_device()
            provisioned = settings.device.path is None and settings.device.setup
        except SetupError as exc:
            return self._setup_failed("run", exc, warnings=self._recorder_warnings(recorder))

        if on_start is not None:
            on_start(node, settings)

        orchestrator = WorkloadOrchestrator(
            open_transport=lambda: self._open_transport(node),
            sampler=DiagnosticSampler(
                settings.monitor.debug_path,
                max_bytes=settings.monitor.max_snapshot_bytes,
            ),
            detector=AnomalyDetector(settings.detector.threshold_ms),
            recorder=recorder,
            workload=settings.workload,
            monitor=settings.monitor,
            on_anomaly=on_anomaly,
            on_progress=on_progress,
        )
        try:
            with shutdown_on_signals(orchestrator.state):
                outcome = orchestrator.run()
        finally:
            if provisioned and settings.device.teardown:
                self._provisioner.teardown()

        return self._summarize(outcome, node, recorder, duration=time.monotonic() - started)

    def scan_file(self, path: Path) -> ServiceResult:
        """Run the detector over a saved diagnostic dump."""
        sampler = DiagnosticSampler(path, max_bytes=self._settings.monitor.max_snapshot_bytes)
        snapshot: Snapshot | None = sampler.sample()
        if snapshot is None:
            return ServiceResult(
                ok=False,
                op="scan",
                error=ServiceError(
                    code="UNREADABLE",
                    message=f"Cannot read diagnostic dump: {path}",
                    detail={"path": str(path)},
                ),
            )

        detector = AnomalyDetector(self._settings.detector.threshold_ms)
        events = [event_payload(e) for e in detector.scan(snapshot)]
        data = {
            "path": str(path),
            "threshold_ms": detector.threshold_ms,
            "lines": len(snapshot.lines()),
            "truncated": snapshot.truncated,
            "anomalies": len(events),
            "items": events,
        }
        if not events:
            return ServiceResult(
                ok=False,
                op="scan",
                data=data,
                error=ServiceError(code="NO_ANOMALIES", message="No anomalous records found"),
            )
        return ServiceResult(ok=True, op="scan", data=data)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def prepare_device(self) -> Path:
        """Resolve the sg node for this run, provisioning it when configured.

        Raises:
            SetupError: If no usable node is available.
        """
        device = self._settings.device
        if device.path is not None:
            if not device.path.exists():
                msg = f"Configured device does not exist: {device.path}"
                raise DeviceNotFoundError(msg)
            return device.path
        if device.setup:
            return self._provisioner.provision()
        return self._locator.discover()

    def _open_sg_device(self, node: Path) -> SgDevice:
        workload = self._settings.workload
        return SgDevice(
            node,
            timeout_ms=workload.command_timeout_ms,
            transfer_length=workload.transfer_length,
        )

    def _summarize(
        self,
        outcome: RunOutcome,
        node: Path,
        recorder: EvidenceRecorder,
        *,
        duration: float,
    ) -> ServiceResult:
        """Any recorded anomaly counts as a reproduction, even after a monitor failure."""
        data: dict[str, Any] = {
            "device": str(node),
            "anomalies": outcome.anomalies,
            "iterations": outcome.iterations,
            "stop_reason": str(outcome.stop_reason) if outcome.stop_reason else None,
            "log_path": str(recorder.path),
            "evidence_failures": recorder.failures,
            "stragglers": outcome.stragglers,
            "first_hit": event_payload(outcome.first_hit) if outcome.first_hit else None,
        }
        warnings = self._recorder_warnings(recorder)
        if outcome.stragglers:
            warnings.append(f"{outcome.stragglers} issuer thread(s) did not stop in time")
        meta = {"duration_ms": round(duration * 1000, 1)}

        if outcome.reproduced:
            if outcome.error is not None:
                warnings.append(f"Monitor loop failed: {outcome.error}")
            return ServiceResult(ok=True, op="run", data=data, warnings=warnings, meta=meta)

        if outcome.error is not None:
            error = ServiceError(
                code="MONITOR_FAILED",
                message=f"Monitor loop failed: {outcome.error}",
            )
        else:
            error = ServiceError(code="NO_ANOMALIES", message=NO_ANOMALY_MESSAGE)
        return ServiceResult(
            ok=False, op="run", data=data, warnings=warnings, error=error, meta=meta
        )

    @staticmethod
    def _recorder_warnings(recorder: EvidenceRecorder) -> list[str]:
        return [recorder.warning] if recorder.warning else []

    @staticmethod
    def _setup_failed(
        op: str,
        exc: SetupError,
        *,
        warnings: list[str] | None = None,
    ) -> ServiceResult:
        logger.error("setup.failed", op=op, error=str(exc))
        return ServiceResult(
            ok=False,
            op=op,
            warnings=warnings or [],
            error=ServiceError(
                code="SETUP_FAILED",
                message=str(exc),
                detail={"type": type(exc).__name__},
            ),
        )
