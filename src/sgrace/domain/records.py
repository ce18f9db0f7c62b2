"""Diagnostic records, classification, and anomaly events.

A record is one line of the sg debug text carrying an elapsed/timeout
marker (``t_o/elap=<timeout>/<elapsed>ms``) and usually an opcode marker
(``op=0x<hex>``).  Parsing is tolerant: a line without a parseable
elapsed time is not a record, and a record without an opcode marker is
reported with the ``"??"`` opcode.

INVARIANT: Classification is a pure function of one record and the
threshold.  Negative elapsed or elapsed above the threshold is anomalous;
the threshold value itself is normal.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

ELAPSED_MARKER = "elap="
UNKNOWN_OPCODE = "??"

_ELAPSED_RE = re.compile(r"t_o/elap=\s*([+-]?\d+)/\s*([+-]?\d+)ms")
_OPCODE_RE = re.compile(r"op=0x([0-9a-fA-F]+)")


class Classification(StrEnum):
    """Outcome of classifying one record."""

    NORMAL = "normal"
    ANOMALOUS = "anomalous"


@dataclass(frozen=True)
class Snapshot:
    """One complete capture of the diagnostic text.

    Attributes:
        text: Verbatim content, cut at a line boundary when ``truncated``.
        captured_at: Wall-clock capture time (local).
        truncated: True if the source held more than the byte cap.
        source: Where the text came from (for evidence headers).
    """

    text: str
    captured_at: datetime
    truncated: bool = False
    source: str = ""

    def lines(self) -> list[str]:
        """Records are newline-separated; other control bytes stay inside a line."""
        lines = self.text.split("\n")
        if lines[-1] == "":
            lines.pop()
        return lines


@dataclass(frozen=True)
class Record:
    """A well-formed diagnostic line."""

    line: str
    line_number: int
    timeout_ms: int
    elapsed_ms: int


@dataclass(frozen=True)
class AnomalyEvent:
    """One anomalous record found in one snapshot scan."""

    iteration: int
    elapsed_ms: int
    opcode: str
    record: Record
    snapshot: Snapshot

    @property
    def line(self) -> str:
        return self.record.line


def parse_record(line: str, line_number: int = 0) -> Record | None:
    """Parse *line* into a :class:`Record`, or None if it carries no elapsed time."""
    if ELAPSED_MARKER not in line:
        return None
    match = _ELAPSED_RE.search(line)
    if match is None:
        return None
    return Record(
        line=line,
        line_number=line_number,
        timeout_ms=int(match.group(1)),
        elapsed_ms=int(match.group(2)),
    )


def parse_opcode(line: str) -> str:
    """Extract the hex run after ``op=0x``; ``"??"`` if the marker is absent.

    Examples:
        >>> parse_opcode("sg0 op=0x0a, flags")
        '0a'
        >>> parse_opcode("no opcode here")
        '??'
    """
    match = _OPCODE_RE.search(line)
    if match is None:
        return UNKNOWN_OPCODE
    return match.group(1)


def classify(record: Record, threshold_ms: int) -> Classification:
    """Classify one record against the implausibility threshold."""
    if record.elapsed_ms < 0 or record.elapsed_ms > threshold_ms:
        return Classification.ANOMALOUS
    return Classification.NORMAL
