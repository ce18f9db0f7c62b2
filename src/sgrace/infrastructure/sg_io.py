"""SG_IO transport — one synchronous SCSI command per call.

Each :class:`SgDevice` owns its own file descriptor so issuers contend in
the sg driver rather than on a shared handle in this process.  The
``sg_io_hdr`` layout mirrors ``<scsi/sg.h>``; ctypes handles the native
alignment of the pointer members.
"""

from __future__ import annotations

import ctypes
import fcntl
import os
from pathlib import Path
from typing import Protocol

from sgrace.domain.commands import ScsiCommand

SG_IO = 0x2285
SG_INTERFACE_ID = ord("S")
SENSE_BUFFER_LEN = 32


class SgIoHdr(ctypes.Structure):
    """``struct sg_io_hdr``."""

    _fields_ = [
        ("interface_id", ctypes.c_int),
        ("dxfer_direction", ctypes.c_int),
        ("cmd_len", ctypes.c_ubyte),
        ("mx_sb_len", ctypes.c_ubyte),
        ("iovec_count", ctypes.c_ushort),
        ("dxfer_len", ctypes.c_uint),
        ("dxferp", ctypes.c_void_p),
        ("cmdp", ctypes.c_void_p),
        ("sbp", ctypes.c_void_p),
        ("timeout", ctypes.c_uint),
        ("flags", ctypes.c_uint),
        ("pack_id", ctypes.c_int),
        ("usr_ptr", ctypes.c_void_p),
        ("status", ctypes.c_ubyte),
        ("masked_status", ctypes.c_ubyte),
        ("msg_status", ctypes.c_ubyte),
        ("sb_len_wr", ctypes.c_ubyte),
        ("host_status", ctypes.c_ushort),
        ("driver_status", ctypes.c_ushort),
        ("resid", ctypes.c_int),
        ("duration", ctypes.c_uint),
        ("info", ctypes.c_uint),
    ]


class CommandTransport(Protocol):
    """What a command issuer needs from its handle on the device."""

    def submit(self, command: ScsiCommand) -> None: ...

    def close(self) -> None: ...


class SgDevice:
    """An open sg node submitting commands through the ``SG_IO`` ioctl.

    Parameters:
        path: The ``/dev/sgN`` node.
        timeout_ms: Per-command timeout handed to the driver.
        transfer_length: Data buffer size for READ/WRITE commands.
    """

    def __init__(self, path: Path, *, timeout_ms: int, transfer_length: int) -> None:
        self.path = path
        self._timeout_ms = timeout_ms
        self._fd: int | None = os.open(path, os.O_RDWR | os.O_NONBLOCK)
        # Buffers live as long as the handle; the driver only borrows them per call.
        self._data = ctypes.create_string_buffer(transfer_length)
        self._sense = ctypes.create_string_buffer(SENSE_BUFFER_LEN)
        self._cdb = ctypes.create_string_buffer(16)

    def build_header(self, command: ScsiCommand) -> SgIoHdr:
        """Fill an ``sg_io_hdr`` for *command* against this handle's buffers."""
        ctypes.memmove(self._cdb, command.cdb, len(command.cdb))
        hdr = SgIoHdr()
        hdr.interface_id = SG_INTERFACE_ID
        hdr.dxfer_direction = int(command.direction)
        hdr.cmd_len = len(command.cdb)
        hdr.mx_sb_len = SENSE_BUFFER_LEN
        hdr.dxfer_len = len(self._data) if command.transfers_data else 0
        hdr.dxferp = ctypes.addressof(self._data)
        hdr.cmdp = ctypes.addressof(self._cdb)
        hdr.sbp = ctypes.addressof(self._sense)
        hdr.timeout = self._timeout_ms
        return hdr

    def submit(self, command: ScsiCommand) -> None:
        """Issue *command* and block until the driver completes or times it out.

        Raises:
            OSError: If the handle is closed or the ioctl fails.
        """
        if self._fd is None:
            msg = f"{self.path} is closed"
            raise OSError(msg)
        hdr = self.build_header(command)
        fcntl.ioctl(self._fd, SG_IO, hdr)

    def close(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> SgDevice:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
