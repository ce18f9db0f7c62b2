"""Anomaly detector — classify every record of one snapshot.

The scan is a generator: events come out lazily, in line order, and
each call walks the whole snapshot with no early exit.  Every anomalous
line yields its own event, even when several lines of one snapshot share
the same opcode and elapsed value.
"""

from __future__ import annotations

from collections.abc import Iterator

import structlog

from sgrace.domain.records import (
    AnomalyEvent,
    Classification,
    Snapshot,
    classify,
    parse_opcode,
    parse_record,
)

logger = structlog.get_logger(__name__)

DEFAULT_THRESHOLD_MS = 10_000


class AnomalyDetector:
    """Scan snapshots for impossible elapsed times.

    Parameters:
        threshold_ms: Largest elapsed value still considered plausible.
    """

    def __init__(self, threshold_ms: int = DEFAULT_THRESHOLD_MS) -> None:
        self.threshold_ms = threshold_ms

    def scan(self, snapshot: Snapshot, *, iteration: int = 0) -> Iterator[AnomalyEvent]:
        """Yield one :class:`AnomalyEvent` per anomalous record in *snapshot*."""
        for line_number, line in enumerate(snapshot.lines(), start=1):
            record = parse_record(line, line_number)
            if record is None:
                continue
            if classify(record, self.threshold_ms) is Classification.NORMAL:
                continue
            event = AnomalyEvent(
                iteration=iteration,
                elapsed_ms=record.elapsed_ms,
                opcode=parse_opcode(line),
                record=record,
                snapshot=snapshot,
            )
            logger.debug(
                "detector.anomaly",
                iteration=iteration,
                line_number=line_number,
                elapsed_ms=event.elapsed_ms,
                opcode=event.opcode,
            )
            yield event
