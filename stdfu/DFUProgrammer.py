from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from stdfu import _log_root
from stdfu.Compatibility import DeviceIdentity, negotiate
from stdfu.config import (
    DFUSE_DATA_BLOCK_OFFSET,
    FLASH_PAD_BYTE,
    POLL_INTERVAL_S,
    STATUS_TIMEOUT_MS,
    TRANSFER_TIMEOUT_MS,
)
from stdfu.DfuErrors import CompatibilityError, DfuError, TransportError
from stdfu.DfuFile import DfuImage, load_dfu_file, parse_dfu_file
from stdfu.DfuProtocol import DfuProtocol, DfuStatus, UsbControlTransport
from stdfu.dfu_state import state_name

logger = logging.getLogger(f"{_log_root}.DFUProgrammer" if _log_root else "DFUProgrammer")


@dataclass(frozen=True)
class DFUProgress:
    phase: str
    percent: int | None
    bytes_written: int | None
    message: str
    elapsed_s: float


@dataclass(frozen=True)
class DFUResult:
    operation: str
    success: bool
    elapsed_s: float
    message: str
    error: DfuError | None = None


ProgressCallback = Callable[[DFUProgress], None]
LineCallback = Callable[[str], None]


class DFUProgrammer:
    """Mass-erase/program an STM32 DfuSe bootloader over USB control transfers.

    The bootloader owns the DFU state machine. Every step issues a command
    and then re-reads ``bState`` with GETSTATUS until the device reports
    dfuIDLE again; nothing is tracked locally.

    ``mass_erase()``, ``program()`` and ``program_file()`` never raise on a
    flashing failure: they report it and return a :class:`DFUResult`. The
    lower-level steps (``erase``, ``write_image``, ``write_block``,
    ``detach``, ``wait_for_idle``) raise :class:`DfuError` subclasses.
    """

    def __init__(
        self,
        transport: UsbControlTransport,
        *,
        device: DeviceIdentity | None = None,
        interface: int = 0,
        poll_interval_s: float = POLL_INTERVAL_S,
        status_timeout_ms: int = STATUS_TIMEOUT_MS,
        transfer_timeout_ms: int = TRANSFER_TIMEOUT_MS,
        progress: ProgressCallback | None = None,
        line_callback: LineCallback | None = None,
        echo_output: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.protocol = DfuProtocol(
            transport,
            interface=interface,
            status_timeout_ms=status_timeout_ms,
            transfer_timeout_ms=transfer_timeout_ms,
        )
        self.device = device if device is not None else getattr(transport, "identity", None)
        self.poll_interval_s = poll_interval_s
        self.progress = progress
        self.line_callback = line_callback
        self.echo_output = echo_output
        self._sleep = sleep

    # ------------------------------------------------------------------ #
    # Output
    # ------------------------------------------------------------------ #
    def _emit(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        if self.line_callback is not None:
            self.line_callback(message)
        # warnings and errors already reach the console through logging
        if self.echo_output and level < logging.WARNING:
            print(message)

    def _report(self, phase: str, percent: int | None, bytes_written: int | None, message: str, start: float) -> None:
        if self.progress is None:
            return
        self.progress(
            DFUProgress(
                phase=phase,
                percent=percent,
                bytes_written=bytes_written,
                message=message,
                elapsed_s=time.monotonic() - start,
            )
        )

    # ------------------------------------------------------------------ #
    # State polling
    # ------------------------------------------------------------------ #
    def wait_for_idle(self, initial_get: bool = False) -> DfuStatus:
        """
        Clear status and re-read it until the device reports dfuIDLE.

        With ``initial_get`` the first request is GETSTATUS instead of
        CLRSTATUS. Use it right after a DNLOAD: the device sits in
        dfuDNLOAD-SYNC, where only GETSTATUS is accepted, and that
        GETSTATUS is what starts the DfuSe command or block write.
        """
        status = self.protocol.get_status() if initial_get else None
        while status is None or not status.is_idle:
            if status is not None:
                logger.debug(f"Waiting for dfuIDLE, device is in {state_name(status.state)}")
                if self.poll_interval_s > 0:
                    self._sleep(self.poll_interval_s)
            self.protocol.clear_status()
            status = self.protocol.get_status()
        return status

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #
    def erase(self) -> float:
        """Mass-erase the flash. Returns the erase time in seconds."""
        self.wait_for_idle()
        self.protocol.mass_erase_command()
        status = self.protocol.get_status()  # starts the erase
        start = time.monotonic()
        self._report("erase", 0, None, "Mass erase started", start)
        logger.debug(f"Mass erase: sleeping {status.poll_timeout_ms} ms before polling")
        self._sleep(status.poll_timeout_ms / 1000.0)
        self.wait_for_idle()
        elapsed = time.monotonic() - start
        self._report("erase", 100, None, "Mass erase completed", start)
        return elapsed

    def write_block(self, address: int, block: bytes, block_number: int) -> None:
        if block_number == 0:
            self.protocol.set_address_pointer(address)
        self.wait_for_idle(initial_get=True)
        self.protocol.download(block, block_number + DFUSE_DATA_BLOCK_OFFSET)
        self.wait_for_idle(initial_get=True)

    def write_image(self, image: DfuImage) -> int:
        """
        Write the image payload in ``max_write_block_size`` chunks.

        The address pointer is only set with block 0; the bootloader derives
        the flash offset of later blocks from their block number. A partial
        final block is padded with 0xFF to a full block. Returns the number
        of blocks written.
        """
        address = image.start_address
        block_size = image.max_write_block_size
        data = memoryview(image.raw)[image.payload_offset:image.payload_offset + image.length]
        num_blocks, remainder = divmod(image.length, block_size)
        start = time.monotonic()

        for block_number in range(num_blocks):
            offset = block_number * block_size
            self.write_block(address, bytes(data[offset:offset + block_size]), block_number)
            written = offset + block_size
            self._report(
                "download",
                written * 100 // image.length,
                written,
                f"Block {block_number} written",
                start,
            )

        block_number = num_blocks
        if remainder:
            offset = block_number * block_size
            block = bytearray([FLASH_PAD_BYTE]) * block_size
            block[:remainder] = data[offset:offset + remainder]
            self.write_block(address, bytes(block), block_number)
            self._report(
                "download",
                100,
                image.length,
                f"Block {block_number} written ({remainder} bytes, padded)",
                start,
            )
            block_number += 1

        return block_number

    def detach(self, address: int) -> None:
        """Point the bootloader at ``address`` and leave DFU mode."""
        start = time.monotonic()
        self.wait_for_idle(initial_get=True)
        self.protocol.set_address_pointer(address)
        self.wait_for_idle(initial_get=True)
        self.protocol.leave()
        self._report("detach", None, None, f"Leaving DFU, jumping to 0x{address:08X}", start)
        try:
            self.protocol.get_status()
            self.protocol.clear_status()
            self.protocol.get_status()
        except TransportError as e:
            # device resets on leave and usually drops off the bus here
            logger.debug(f"Status after leave failed (expected): {e}")

    # ------------------------------------------------------------------ #
    # High-level operations
    # ------------------------------------------------------------------ #
    def _fail(self, operation: str, start: float, error: DfuError) -> DFUResult:
        message = f"{operation} failed: {error}"
        self._emit(message, logging.ERROR)
        return DFUResult(
            operation=operation,
            success=False,
            elapsed_s=time.monotonic() - start,
            message=message,
            error=error,
        )

    def mass_erase(self) -> DFUResult:
        start = time.monotonic()
        try:
            elapsed = self.erase()
        except DfuError as e:
            return self._fail("mass_erase", start, e)
        message = f"Mass erase completed in {int(elapsed * 1000)} ms"
        self._emit(message)
        return DFUResult(operation="mass_erase", success=True, elapsed_s=time.monotonic() - start, message=message)

    def program(self, firmware: Union[bytes, bytearray, DfuImage]) -> DFUResult:
        """Validate ``firmware`` against the device, write it and detach."""
        start = time.monotonic()
        self._emit("Start Programming")
        try:
            if isinstance(firmware, DfuImage):
                image = firmware
            else:
                image = parse_dfu_file(firmware)
            self._emit(f"File Size: {image.file_size} Bytes")
            self._emit(image.describe())

            if self.device is None:
                raise CompatibilityError("Device identity unknown, cannot check file compatibility")
            self._emit(f"Device: {self.device}")
            image = negotiate(image, self.device, warn=lambda m: self._emit(m, logging.WARNING))

            self._emit(f"Start writing file in blocks of {image.max_write_block_size} Bytes")
            write_start = time.monotonic()
            blocks = self.write_image(image)
            self._emit(
                f"Programming completed in {int((time.monotonic() - write_start) * 1000)} ms "
                f"({blocks} blocks)"
            )

            self._emit("Detaching and resetting")
            self.detach(image.start_address)
        except DfuError as e:
            return self._fail("program", start, e)

        return DFUResult(
            operation="program",
            success=True,
            elapsed_s=time.monotonic() - start,
            message=f"Programmed {image.length} bytes at 0x{image.start_address:08X}",
        )

    def program_file(self, path: Union[str, Path]) -> DFUResult:
        """Program the .dfu file at ``path``, or the first one inside it if it is a directory."""
        start = time.monotonic()
        try:
            file_path, image = load_dfu_file(path)
        except DfuError as e:
            return self._fail("program", start, e)
        self._emit(f"File Path: {file_path}")
        return self.program(image)
