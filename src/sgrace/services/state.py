"""Shared run state — shutdown flag and tally, passed to every thread.

Cross-thread mutable state lives only here.  The shutdown flag is set at
most once (first reason wins) and never reset.  The tally has a single
writer, the monitor loop, and its updates share one lock with the
operator alert so a count and its banner are atomic with respect to each
other.  With one monitor thread that lock never actually contends; it is
kept so a parallel monitor stays correct.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from sgrace.domain.lifecycle import StopReason
from sgrace.domain.records import AnomalyEvent

logger = structlog.get_logger(__name__)


@dataclass
class RunTally:
    """Process-wide counters read at shutdown for the summary.

    Attributes:
        anomalies: Events counted across all iterations.
        iterations: Completed monitor iterations.
        first_hit: First event of the whole run.
        latest_hit: First event of the most recent scan that found any.
    """

    anomalies: int = 0
    iterations: int = 0
    first_hit: AnomalyEvent | None = None
    latest_hit: AnomalyEvent | None = None


class RunState:
    """Shutdown flag plus lock-guarded tally."""

    def __init__(self) -> None:
        self.tally = RunTally()
        self.lock = threading.Lock()
        self.stop_reason: StopReason | None = None
        self._shutdown = threading.Event()
        # Reentrant: a signal handler may interrupt the main thread mid-call.
        self._reason_lock = threading.RLock()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self, reason: StopReason) -> bool:
        """Set the shutdown flag.  Returns True only for the call that set it."""
        with self._reason_lock:
            if self.stop_reason is not None:
                return False
            self.stop_reason = reason
            self._shutdown.set()
        logger.debug("state.shutdown_requested", reason=str(reason))
        return True

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*, waking early on shutdown.  True if shutting down."""
        if seconds <= 0:
            return self._shutdown.is_set()
        return self._shutdown.wait(seconds)

    def count_anomaly(
        self,
        event: AnomalyEvent,
        alert: Callable[[AnomalyEvent, RunTally], None] | None = None,
    ) -> int:
        """Count *event* and emit its alert under the tally lock."""
        with self.lock:
            self.tally.anomalies += 1
            if self.tally.first_hit is None:
                self.tally.first_hit = event
            if alert is not None:
                alert(event, self.tally)
            return self.tally.anomalies

    def finish_iteration(
        self,
        iteration: int,
        first_event: AnomalyEvent | None,
        progress: Callable[[RunTally], None] | None = None,
    ) -> None:
        """Record a completed scan; *progress* runs under the lock when given."""
        with self.lock:
            self.tally.iterations = iteration
            if first_event is not None:
                self.tally.latest_hit = first_event
            if progress is not None:
                progress(self.tally)

    def snapshot_tally(self) -> RunTally:
        """Copy of the tally taken under the lock."""
        with self.lock:
            return RunTally(
                anomalies=self.tally.anomalies,
                iterations=self.tally.iterations,
                first_hit=self.tally.first_hit,
                latest_hit=self.tally.latest_hit,
            )
