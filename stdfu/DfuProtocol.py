"""
DfuProtocol.py

DFU class requests and the DfuSe vendor commands, one method per request.

The driver is stateless and never retries: it issues exactly one control
transfer per call and converts any failure into :class:`TransportError`.
Polling and recovery live in :mod:`stdfu.DFUProgrammer`.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Optional, Protocol, Union

import usb.core

from stdfu import _log_root
from stdfu.config import (
    DFU_CLRSTATUS,
    DFU_DNLOAD,
    DFU_GETSTATUS,
    DFU_REQUEST_TYPE,
    DFU_STATUS_LENGTH,
    DFUSE_CMD_ERASE,
    DFUSE_CMD_SET_ADDRESS,
    STATUS_TIMEOUT_MS,
    TRANSFER_TIMEOUT_MS,
    USB_DIR_IN,
    USB_DIR_OUT,
)
from stdfu.dfu_state import DFUState, state_name, status_name
from stdfu.DfuErrors import TransportError

logger = logging.getLogger(f"{_log_root}.DfuProtocol" if _log_root else "DfuProtocol")


class UsbControlTransport(Protocol):
    """
    Anything with pyusb's ``Device.ctrl_transfer`` signature.

    IN transfers return the bytes read, OUT transfers the number of bytes
    written. A negative count is treated as a failure.
    """

    def ctrl_transfer(
        self,
        bmRequestType: int,
        bRequest: int,
        wValue: int = 0,
        wIndex: int = 0,
        data_or_wLength: Union[None, int, bytes] = None,
        timeout: Optional[int] = None,
    ) -> Union[int, bytes]:
        ...


@dataclass(frozen=True)
class DfuStatus:
    status: int
    state: int
    poll_timeout_ms: int
    string_index: int = 0

    @classmethod
    def from_bytes(cls, data) -> "DfuStatus":
        """Decode a GETSTATUS reply: bStatus, bwPollTimeout[3], bState, iString."""
        if len(data) < DFU_STATUS_LENGTH:
            raise ValueError(f"Status data too short: {len(data)} bytes, need {DFU_STATUS_LENGTH}")
        status, timeout_lo, timeout_hi, state, string_index = struct.unpack("<BHBBB", bytes(data[:DFU_STATUS_LENGTH]))
        return cls(
            status=status,
            state=state,
            poll_timeout_ms=timeout_lo | (timeout_hi << 16),
            string_index=string_index,
        )

    @property
    def is_idle(self) -> bool:
        return self.state == DFUState.DFU_IDLE

    def __str__(self) -> str:
        return (
            f"DfuStatus(status={status_name(self.status)}, "
            f"state={state_name(self.state)}, "
            f"poll_timeout={self.poll_timeout_ms}ms)"
        )


class DfuProtocol:
    def __init__(
        self,
        transport: UsbControlTransport,
        *,
        interface: int = 0,
        status_timeout_ms: int = STATUS_TIMEOUT_MS,
        transfer_timeout_ms: int = TRANSFER_TIMEOUT_MS,
    ):
        self.transport = transport
        self.interface = interface
        self.status_timeout_ms = status_timeout_ms
        self.transfer_timeout_ms = transfer_timeout_ms

    def _control(self, operation: str, request_type: int, request: int, value: int, data_or_length, timeout: int):
        try:
            result = self.transport.ctrl_transfer(
                request_type, request, value, self.interface, data_or_length, timeout
            )
        except usb.core.USBError as e:
            raise TransportError(f"USB failed during {operation}: {e}", operation) from e
        if isinstance(result, int) and result < 0:
            raise TransportError(f"USB failed during {operation}: returned {result}", operation)
        return result

    def get_status(self) -> DfuStatus:
        data = self._control(
            "getStatus",
            DFU_REQUEST_TYPE | USB_DIR_IN,
            DFU_GETSTATUS,
            0,
            DFU_STATUS_LENGTH,
            self.status_timeout_ms,
        )
        if isinstance(data, int) or len(data) < DFU_STATUS_LENGTH:
            got = data if isinstance(data, int) else len(data)
            raise TransportError(
                f"USB failed during getStatus: got {got} of {DFU_STATUS_LENGTH} bytes", "getStatus"
            )
        status = DfuStatus.from_bytes(data)
        logger.debug(f"getStatus -> {status}")
        return status

    def clear_status(self) -> None:
        self._control(
            "clearStatus",
            DFU_REQUEST_TYPE | USB_DIR_OUT,
            DFU_CLRSTATUS,
            0,
            None,
            self.transfer_timeout_ms,
        )

    def download(self, data: Optional[bytes], block_number: int = 0, operation: str = "download") -> int:
        """
        DNLOAD ``data`` with ``block_number`` as wValue.

        ``data`` may be None or empty, which the bootloader reads as a
        request to leave DFU mode.
        """
        payload = bytes(data) if data else None
        expected = len(payload) if payload else 0
        written = self._control(
            operation,
            DFU_REQUEST_TYPE | USB_DIR_OUT,
            DFU_DNLOAD,
            block_number,
            payload,
            self.transfer_timeout_ms,
        )
        if not isinstance(written, int):
            written = len(written)
        if written < expected:
            raise TransportError(
                f"USB failed during {operation}: wrote {written} of {expected} bytes", operation
            )
        return written

    def mass_erase_command(self) -> None:
        self.download(bytes([DFUSE_CMD_ERASE]), 0, operation="massErase")

    def set_address_pointer(self, address: int) -> None:
        command = struct.pack("<BI", DFUSE_CMD_SET_ADDRESS, address & 0xFFFFFFFF)
        logger.debug(f"Set address pointer to 0x{address:08X}")
        self.download(command, 0, operation="setAddressPointer")

    def leave(self) -> None:
        self.download(None, 0, operation="leave")
