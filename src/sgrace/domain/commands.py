"""SCSI command catalogue driven by the command issuers.

Three 6-byte CDBs share the sg completion-accounting path in the kernel:
TEST UNIT READY (no data), READ(6) and WRITE(6) (one block each).
WRITE(6) is the opcode the elapsed-time corruption was first reported on.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class DataDirection(IntEnum):
    """``dxfer_direction`` values from ``<scsi/sg.h>``."""

    NONE = -1
    TO_DEV = -2
    FROM_DEV = -3


@dataclass(frozen=True)
class ScsiCommand:
    """One immutable CDB with its transfer direction."""

    name: str
    cdb: bytes
    direction: DataDirection

    @property
    def opcode(self) -> str:
        """Two-digit lowercase hex tag, as printed by ``op=0x..``."""
        return f"{self.cdb[0]:02x}"

    @property
    def transfers_data(self) -> bool:
        return self.direction is not DataDirection.NONE


TEST_UNIT_READY = ScsiCommand(
    name="TEST UNIT READY",
    cdb=bytes([0x00, 0x00, 0x00, 0x00, 0x00, 0x00]),
    direction=DataDirection.NONE,
)
READ_6 = ScsiCommand(
    name="READ(6)",
    cdb=bytes([0x08, 0x00, 0x00, 0x00, 0x01, 0x00]),
    direction=DataDirection.FROM_DEV,
)
WRITE_6 = ScsiCommand(
    name="WRITE(6)",
    cdb=bytes([0x0A, 0x00, 0x00, 0x00, 0x01, 0x00]),
    direction=DataDirection.TO_DEV,
)

# Round-robin order used by every issuer.
COMMAND_CYCLE: tuple[ScsiCommand, ...] = (TEST_UNIT_READY, READ_6, WRITE_6)

# Opcode the corruption was originally reported against.
REPORTED_OPCODE = WRITE_6.opcode

_BY_OPCODE: dict[str, ScsiCommand] = {cmd.opcode: cmd for cmd in COMMAND_CYCLE}


def command_for_opcode(opcode: str) -> ScsiCommand | None:
    """Look up a catalogue command by its hex tag (case-insensitive).

    Returns None for opcodes the harness never issues (or ``"??"``).
    """
    return _BY_OPCODE.get(opcode.lower().zfill(2))
