from __future__ import annotations

import struct
import zlib
from array import array
from collections import deque

import pytest
import usb.core

from stdfu.config import DFU_CLRSTATUS, DFU_DNLOAD, DFU_GETSTATUS
from stdfu.dfu_state import DFUState


def with_crc(buffer: bytes) -> bytes:
    """Replace the trailing CRC field with the DfuSe (un-inverted) CRC-32 of the rest."""
    body = bytes(buffer[:-4])
    crc = zlib.crc32(body) ^ 0xFFFFFFFF
    return body + struct.pack("<I", crc)


def build_dfuse(
    payload: bytes,
    *,
    address: int = 0x08000000,
    vid: int = 0x0483,
    pid: int = 0xDF11,
    version: int = 0x0200,
    element_size: int | None = None,
    total_size: int | None = None,
) -> bytes:
    """Build a single-target, single-element DfuSe file around ``payload``."""
    size = len(payload) if element_size is None else element_size
    element = struct.pack("<II", address, size) + payload
    target = (
        b"Target"
        + b"\x00"                      # bAlternateSetting
        + struct.pack("<I", 1)          # bTargetNamed
        + b"ST...".ljust(255, b"\x00")  # szTargetName
        + struct.pack("<I", len(element))
        + struct.pack("<I", 1)          # dwNbElements
    )
    suffix_body = struct.pack("<HHHH", version, pid, vid, 0x011A) + b"UFD" + bytes([16])

    image = target + element
    if total_size is not None:
        filler = total_size - 11 - len(image) - len(suffix_body) - 4
        assert filler >= 0
        image += b"\x00" * filler
    prefix = b"DfuSe" + b"\x01" + struct.pack("<I", 11 + len(image)) + b"\x01"
    return with_crc(prefix + image + suffix_body + b"\x00\x00\x00\x00")


def pattern(length: int) -> bytes:
    return bytes(i * 7 % 251 for i in range(length))


class FakeDfuDevice:
    """
    Scripted bootloader. Each GETSTATUS pops the next state from ``states``
    and falls back to ``default_state`` once they run out.
    """

    def __init__(
        self,
        states=(),
        *,
        default_state: int = DFUState.DFU_IDLE,
        poll_timeout_ms: int = 0,
        disconnect_on_leave: bool = False,
        fail_requests=(),
        identity=None,
    ):
        self.states = deque(states)
        self.default_state = default_state
        self.poll_timeout_ms = poll_timeout_ms
        self.disconnect_on_leave = disconnect_on_leave
        self.fail_requests = set(fail_requests)
        self.calls = []
        self.left = False
        if identity is not None:
            self.identity = identity

    def ctrl_transfer(self, bmRequestType, bRequest, wValue=0, wIndex=0, data_or_wLength=None, timeout=None):
        if bRequest in self.fail_requests or (self.left and self.disconnect_on_leave):
            raise usb.core.USBError("No such device (it may have been disconnected)")

        if bRequest == DFU_GETSTATUS:
            self.calls.append(("GETSTATUS", bmRequestType, wValue, None))
            state = self.states.popleft() if self.states else self.default_state
            t = self.poll_timeout_ms
            return array("B", [0, t & 0xFF, (t >> 8) & 0xFF, (t >> 16) & 0xFF, int(state), 0])

        if bRequest == DFU_CLRSTATUS:
            self.calls.append(("CLRSTATUS", bmRequestType, wValue, None))
            return 0

        if bRequest == DFU_DNLOAD:
            data = bytes(data_or_wLength) if data_or_wLength else b""
            self.calls.append(("DNLOAD", bmRequestType, wValue, data))
            if not data:
                self.left = True
            return len(data)

        raise AssertionError(f"unexpected request 0x{bRequest:02X}")

    def requests(self):
        return [c[0] for c in self.calls]

    def downloads(self):
        return [(c[2], c[3]) for c in self.calls if c[0] == "DNLOAD"]


@pytest.fixture
def fake_device():
    return FakeDfuDevice()
