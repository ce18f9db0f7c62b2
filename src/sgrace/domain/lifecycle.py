"""Orchestrator run lifecycle.

``Idle -> Running -> Draining -> Stopped``.  Setup failures are handled
before an orchestrator exists, so every run takes the full path.
"""

from __future__ import annotations

from enum import StrEnum


class RunPhase(StrEnum):
    """Orchestrator states."""

    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class StopReason(StrEnum):
    """Why the shutdown flag was set.  Only the first reason is kept."""

    BUDGET = "budget"
    SIGNAL = "signal"
    FATAL = "fatal"


PHASE_TRANSITIONS: dict[str, list[str]] = {
    "idle": ["running"],
    "running": ["draining"],
    "draining": ["stopped"],
    "stopped": [],
}


def is_valid_transition(current: str, target: str) -> bool:
    """Check whether moving from *current* to *target* phase is allowed."""
    return target in PHASE_TRANSITIONS.get(current, [])
