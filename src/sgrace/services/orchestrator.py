"""Workload orchestrator — issuer pool plus the sampling monitor.

Lifecycle ``Idle -> Running -> Draining -> Stopped``:

* Running: W issuer threads and one monitor thread are started.
* Draining: entered once the shutdown flag is set (iteration budget,
  signal, or a fatal monitor error); the orchestrator waits for the
  monitor and every issuer to notice the flag.
* Stopped: the tally is final and summarized.

The monitor is strictly serial: one snapshot is captured, fully scanned,
and its evidence written before the next capture starts.  Evidence is
appended outside the tally lock; only counting and the alert hold it.
"""

from __future__ import annotations

import signal
import threading
import time
from collections.abc import Callable, Generator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol

import structlog

from sgrace.config.models import MonitorConfig, WorkloadConfig
from sgrace.domain.commands import COMMAND_CYCLE, ScsiCommand
from sgrace.domain.lifecycle import RunPhase, StopReason, is_valid_transition
from sgrace.domain.records import AnomalyEvent, Snapshot
from sgrace.services.detector import AnomalyDetector
from sgrace.services.evidence import EvidenceRecorder
from sgrace.services.issuer import CommandIssuer, TransportFactory
from sgrace.services.state import RunState, RunTally

logger = structlog.get_logger(__name__)

AlertHook = Callable[[AnomalyEvent, RunTally], None]
ProgressHook = Callable[[RunTally], None]

# Extra seconds granted to an issuer beyond its command timeout when draining.
DRAIN_GRACE_SECONDS = 1.0
_JOIN_POLL_SECONDS = 0.2


class Sampler(Protocol):
    def sample(self) -> Snapshot | None: ...


@dataclass(frozen=True)
class RunOutcome:
    """Final result of one orchestrated run."""

    anomalies: int
    iterations: int
    stop_reason: StopReason | None
    phase: RunPhase
    stragglers: int = 0
    first_hit: AnomalyEvent | None = None
    error: str | None = None

    @property
    def reproduced(self) -> bool:
        return self.anomalies > 0


class WorkloadOrchestrator:
    """Own the issuer threads and the monitor loop for one run.

    Parameters:
        open_transport: Called once per issuer to open its own handle.
        sampler: Captures diagnostic snapshots.
        detector: Scans snapshots.
        recorder: Appends evidence for each anomaly.
        workload: Issuer pool settings.
        monitor: Sampling loop settings.
        on_anomaly: Operator alert, called under the tally lock.
        on_progress: Progress report every ``monitor.progress_every`` iterations.
        state: Shared state (a fresh one by default).
    """

    def __init__(
        self,
        *,
        open_transport: TransportFactory,
        sampler: Sampler,
        detector: AnomalyDetector,
        recorder: EvidenceRecorder,
        workload: WorkloadConfig,
        monitor: MonitorConfig,
        on_anomaly: AlertHook | None = None,
        on_progress: ProgressHook | None = None,
        state: RunState | None = None,
        commands: Sequence[ScsiCommand] = COMMAND_CYCLE,
    ) -> None:
        self._open_transport = open_transport
        self._sampler = sampler
        self._detector = detector
        self._recorder = recorder
        self._workload = workload
        self._monitor = monitor
        self._on_anomaly = on_anomaly
        self._on_progress = on_progress
        self._commands = tuple(commands)
        self.state = state or RunState()
        self.phase = RunPhase.IDLE
        self.issuers: list[CommandIssuer] = []
        self._issuer_threads: list[threading.Thread] = []
        self._monitor_thread: threading.Thread | None = None
        self._error: BaseException | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> RunOutcome:
        """Run to completion and return the final tally."""
        self._transition(RunPhase.RUNNING)
        self._start_issuers()
        self._monitor_thread = threading.Thread(
            target=self._monitor_main, name="sgrace-monitor", daemon=True
        )
        self._monitor_thread.start()

        # Poll so signal handlers get to run on the main thread.
        while self._monitor_thread.is_alive():
            self._monitor_thread.join(_JOIN_POLL_SECONDS)

        # The monitor always sets the flag on exit; this covers a dead thread.
        self.state.request_shutdown(StopReason.FATAL)
        self._transition(RunPhase.DRAINING)
        stragglers = self._join_issuers()
        self._transition(RunPhase.STOPPED)

        tally = self.state.snapshot_tally()
        outcome = RunOutcome(
            anomalies=tally.anomalies,
            iterations=tally.iterations,
            stop_reason=self.state.stop_reason,
            phase=self.phase,
            stragglers=stragglers,
            first_hit=tally.first_hit,
            error=repr(self._error) if self._error is not None else None,
        )
        logger.debug(
            "orchestrator.finished",
            anomalies=outcome.anomalies,
            iterations=outcome.iterations,
            reason=str(outcome.stop_reason),
        )
        return outcome

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _transition(self, target: RunPhase) -> None:
        if not is_valid_transition(self.phase, target):
            msg = f"Invalid orchestrator transition: {self.phase} -> {target}"
            raise RuntimeError(msg)
        logger.debug("orchestrator.state", previous=str(self.phase), phase=str(target))
        self.phase = target

    def _start_issuers(self) -> None:
        for index in range(self._workload.workers):
            issuer = CommandIssuer(
                index,
                self._open_transport,
                self.state,
                delay=self._workload.issue_delay,
                commands=self._commands,
            )
            thread = threading.Thread(target=issuer.run, name=f"sgrace-issuer-{index}", daemon=True)
            self.issuers.append(issuer)
            self._issuer_threads.append(thread)
            thread.start()
        logger.debug("orchestrator.issuers_started", workers=len(self._issuer_threads))

    def _join_issuers(self) -> int:
        """Wait one shared command-timeout window; return how many issuers are still alive."""
        deadline = time.monotonic() + self._workload.command_timeout_ms / 1000 + DRAIN_GRACE_SECONDS
        stragglers = 0
        for thread in self._issuer_threads:
            thread.join(max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                stragglers += 1
                logger.warning("orchestrator.issuer_stuck", thread=thread.name)
        return stragglers

    def _monitor_main(self) -> None:
        try:
            self._monitor_loop()
        except Exception as exc:
            self._error = exc
            logger.exception("orchestrator.monitor_failed")
            self.state.request_shutdown(StopReason.FATAL)

    def _monitor_loop(self) -> None:
        budget = self._monitor.iterations
        iteration = 0
        while not self.state.shutdown_requested and iteration < budget:
            snapshot = self._sampler.sample()
            if snapshot is None:
                logger.warning("sampler.unavailable", iteration=iteration)
                self.state.wait(self._monitor.unavailable_backoff)
                continue

            first_event: AnomalyEvent | None = None
            for event in self._detector.scan(snapshot, iteration=iteration):
                if first_event is None:
                    first_event = event
                self._recorder.record(event)
                self.state.count_anomaly(event, self._on_anomaly)

            iteration += 1
            report = self._on_progress if iteration % self._monitor.progress_every == 0 else None
            self.state.finish_iteration(iteration, first_event, report)
            self.state.wait(self._monitor.sample_interval)

        if iteration >= budget:
            self.state.request_shutdown(StopReason.BUDGET)


@contextmanager
def shutdown_on_signals(
    state: RunState,
    signals: Sequence[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
) -> Generator[None]:
    """Route *signals* to a shutdown request for the duration of the block.

    The first signal only sets the flag, so an evidence block being written
    when it lands is finished before the monitor exits.  A second signal
    raises :class:`KeyboardInterrupt` to abandon a drain stuck on hung
    issuers.  No-op outside the main thread, where handlers cannot be
    installed.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    received: list[int] = []

    def handler(signum: int, _frame: object) -> None:
        name = signal.Signals(signum).name
        if received:
            logger.warning("orchestrator.forced_exit", signal=name)
            raise KeyboardInterrupt
        received.append(signum)
        if state.request_shutdown(StopReason.SIGNAL):
            logger.warning("orchestrator.signal", signal=name)

    previous = {sig: signal.signal(sig, handler) for sig in signals}
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)
