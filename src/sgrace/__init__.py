"""sgrace — SCSI generic race reproducer."""

__version__ = "0.1.0"
