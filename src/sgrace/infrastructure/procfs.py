"""Diagnostic sampler — whole-file reads of the sg debug text.

INVARIANT: A snapshot is fully read before anyone parses it.  Content
beyond ``max_bytes`` is dropped at the last complete line, so record
boundaries are never split.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import structlog

from sgrace.domain.records import Snapshot

logger = structlog.get_logger(__name__)


class DiagnosticSampler:
    """Capture ``/proc/scsi/sg/debug`` (or any text source) in one pass.

    Parameters:
        path: The diagnostic file.
        max_bytes: Cap on the captured text, in encoded bytes.
    """

    def __init__(self, path: Path, *, max_bytes: int = 65_536) -> None:
        self.path = path
        self.max_bytes = max_bytes

    def sample(self) -> Snapshot | None:
        """Return the current snapshot, or None if the source is unavailable.

        Callers back off and retry on None; it is never fatal.
        """
        captured_at = datetime.now()
        chunks: list[str] = []
        size = 0
        truncated = False
        try:
            with self.path.open("r", encoding="utf-8", errors="replace") as fh:
                for line in fh:
                    line_size = len(line.encode("utf-8"))
                    if size + line_size > self.max_bytes:
                        truncated = True
                        break
                    chunks.append(line)
                    size += line_size
        except OSError as exc:
            logger.debug("sampler.read_failed", path=str(self.path), error=str(exc))
            return None

        if truncated:
            logger.debug("sampler.truncated", path=str(self.path), max_bytes=self.max_bytes)
        return Snapshot(
            text="".join(chunks),
            captured_at=captured_at,
            truncated=truncated,
            source=str(self.path),
        )
