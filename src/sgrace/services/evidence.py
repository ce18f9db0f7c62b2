"""Evidence recorder — append-only anomaly log with full snapshot context.

The log is truncated and given a header once per process, then every
anomaly appends a self-delimiting block: banner, iteration, elapsed,
opcode, banner, the verbatim snapshot, closing banner.  The whole
snapshot is always written.

INVARIANT: A failed write never stops the run.  The first failure is
reported once; later failures are counted silently.
"""

from __future__ import annotations

import os
import threading
from datetime import datetime
from pathlib import Path

import structlog

from sgrace.domain.records import AnomalyEvent

logger = structlog.get_logger(__name__)

BANNER_WIDTH = 80
HEAVY_RULE = "=" * BANNER_WIDTH
LIGHT_RULE = "-" * BANNER_WIDTH
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_header(started_at: datetime, source: str) -> str:
    """Text written once when the log is (re)created."""
    return (
        "Bug Detection Log\n"
        f"Started at: {started_at.strftime(TIME_FORMAT)}\n"
        f"Log file will contain complete {source} snapshots when anomalies are detected\n"
        "\n"
    )


def format_entry(event: AnomalyEvent, detected_at: datetime) -> str:
    """Render one evidence block for *event*."""
    snapshot = event.snapshot
    body = snapshot.text if snapshot.text.endswith("\n") or not snapshot.text else snapshot.text + "\n"
    source = snapshot.source or "diagnostic"
    lines = [
        "",
        HEAVY_RULE,
        f"ANOMALY DETECTED at {detected_at.strftime(TIME_FORMAT)}",
        HEAVY_RULE,
        f"Iteration:     {event.iteration}",
        f"Elapsed time:  {event.elapsed_ms} ms",
        f"Opcode:        0x{event.opcode}",
        f"Line:          {event.record.line_number}",
    ]
    if snapshot.truncated:
        lines.append("Snapshot:      truncated at capture limit")
    lines += [
        LIGHT_RULE,
        f"Complete {source} snapshot:",
        LIGHT_RULE,
    ]
    return "\n".join(lines) + "\n" + body + HEAVY_RULE + "\n\n"


class EvidenceRecorder:
    """Durably append anomaly evidence to a text log.

    Parameters:
        path: Log file location.
        fsync: Force each block to stable storage before returning.
    """

    def __init__(self, path: Path, *, fsync: bool = True) -> None:
        self.path = path
        self.fsync = fsync
        self.failures = 0
        self.warning: str | None = None
        # Serializes whole blocks only; never held while counting or alerting.
        self._write_lock = threading.Lock()

    def initialize(self, source: str, *, started_at: datetime | None = None) -> bool:
        """Truncate the log and write its header.  Returns False on failure."""
        header = format_header(started_at or datetime.now(), source)
        try:
            with self.path.open("w", encoding="utf-8") as fh:
                fh.write(header)
        except OSError as exc:
            self._report_failure(exc)
            return False
        logger.debug("evidence.initialized", path=str(self.path))
        return True

    def record(self, event: AnomalyEvent, *, detected_at: datetime | None = None) -> bool:
        """Append the evidence block for *event*.  Returns False on failure."""
        entry = format_entry(event, detected_at or datetime.now())
        with self._write_lock:
            try:
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(entry)
                    fh.flush()
                    if self.fsync:
                        os.fsync(fh.fileno())
            except OSError as exc:
                self._report_failure(exc)
                return False
        return True

    def _report_failure(self, exc: OSError) -> None:
        self.failures += 1
        if self.warning is not None:
            return
        self.warning = f"Failed to write evidence log {self.path}: {exc.strerror or exc}"
        logger.warning("evidence.write_failed", path=str(self.path), error=str(exc))
