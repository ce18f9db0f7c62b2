"""Command issuer — one thread hammering the device in round-robin.

The issuer never looks at command results.  The race shows up in the
diagnostic text, so a failed or rejected command is just more load.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Sequence

import structlog

from sgrace.domain.commands import COMMAND_CYCLE, ScsiCommand
from sgrace.infrastructure.sg_io import CommandTransport
from sgrace.services.state import RunState

logger = structlog.get_logger(__name__)

TransportFactory = Callable[[], CommandTransport]


class CommandIssuer:
    """Submit commands until the shutdown flag is observed.

    Parameters:
        index: Worker number, for logs and thread names.
        open_transport: Opens this issuer's private handle on the device.
        state: Shared run state (only the shutdown flag is read).
        delay: Pause between commands, in seconds.
        commands: Round-robin order.
    """

    def __init__(
        self,
        index: int,
        open_transport: TransportFactory,
        state: RunState,
        *,
        delay: float = 0.0001,
        commands: Sequence[ScsiCommand] = COMMAND_CYCLE,
    ) -> None:
        self.index = index
        self._open_transport = open_transport
        self._state = state
        self._delay = delay
        self._commands = tuple(commands)
        self.submitted = 0

    def run(self) -> None:
        """Thread body.  Returns once shutdown is requested."""
        try:
            transport = self._open_transport()
        except OSError as exc:
            logger.warning("issuer.open_failed", issuer=self.index, error=str(exc))
            return

        try:
            for command in itertools.cycle(self._commands):
                if self._state.shutdown_requested:
                    break
                try:
                    transport.submit(command)
                except OSError:
                    pass  # detection relies on the diagnostic stream only
                self.submitted += 1
                if self._state.wait(self._delay):
                    break
        finally:
            transport.close()
        logger.debug("issuer.stopped", issuer=self.index, submitted=self.submitted)
