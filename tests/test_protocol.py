from array import array

import pytest
import usb.core

from stdfu.DfuErrors import TransportError
from stdfu.DfuProtocol import DfuProtocol, DfuStatus
from stdfu.dfu_state import DFUState

from conftest import FakeDfuDevice


class ScriptedTransport:
    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    def ctrl_transfer(self, bmRequestType, bRequest, wValue=0, wIndex=0, data_or_wLength=None, timeout=None):
        self.calls.append((bmRequestType, bRequest, wValue, wIndex, data_or_wLength, timeout))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


def test_status_decoding() -> None:
    status = DfuStatus.from_bytes(bytes([0x00, 0x10, 0x27, 0x00, 0x04, 0x00]))
    assert status.status == 0
    assert status.poll_timeout_ms == 10000
    assert status.state == DFUState.DFU_DNBUSY
    assert not status.is_idle
    assert "DFU_DNBUSY" in str(status)


def test_status_decoding_three_byte_timeout() -> None:
    status = DfuStatus.from_bytes([0x0A, 0x01, 0x02, 0x03, 0x0A, 0x00])
    assert status.poll_timeout_ms == 0x030201
    assert status.state == DFUState.DFU_ERROR


def test_get_status_request() -> None:
    transport = ScriptedTransport(array("B", [0, 0, 0, 0, 2, 0]))
    status = DfuProtocol(transport, interface=1).get_status()

    assert status.is_idle
    assert transport.calls == [(0xA1, 0x03, 0, 1, 6, 500)]


def test_get_status_short_reply() -> None:
    transport = ScriptedTransport(array("B", [0, 0, 0]))
    with pytest.raises(TransportError) as excinfo:
        DfuProtocol(transport).get_status()
    assert excinfo.value.operation == "getStatus"


def test_get_status_negative_length() -> None:
    with pytest.raises(TransportError):
        DfuProtocol(ScriptedTransport(-1)).get_status()


def test_usb_error_names_operation() -> None:
    transport = ScriptedTransport(usb.core.USBError("Pipe error"))
    with pytest.raises(TransportError) as excinfo:
        DfuProtocol(transport).clear_status()
    assert excinfo.value.operation == "clearStatus"
    assert "clearStatus" in str(excinfo.value)


def test_clear_status_request() -> None:
    transport = ScriptedTransport(0)
    DfuProtocol(transport, transfer_timeout_ms=1234).clear_status()
    assert transport.calls == [(0x21, 0x04, 0, 0, None, 1234)]


def test_short_download_write() -> None:
    transport = ScriptedTransport(3)
    with pytest.raises(TransportError) as excinfo:
        DfuProtocol(transport).download(b"\x00" * 8, 2)
    assert excinfo.value.operation == "download"


def test_mass_erase_command(fake_device: FakeDfuDevice) -> None:
    DfuProtocol(fake_device).mass_erase_command()
    assert fake_device.calls == [("DNLOAD", 0x21, 0, b"\x41")]


def test_set_address_pointer(fake_device: FakeDfuDevice) -> None:
    DfuProtocol(fake_device).set_address_pointer(0x08004000)
    assert fake_device.downloads() == [(0, b"\x21\x00\x40\x00\x08")]


def test_leave_sends_empty_download(fake_device: FakeDfuDevice) -> None:
    DfuProtocol(fake_device).leave()
    assert fake_device.downloads() == [(0, b"")]
    assert fake_device.left


def test_download_block_number(fake_device: FakeDfuDevice) -> None:
    assert DfuProtocol(fake_device).download(b"\x01\x02", 5) == 2
    assert fake_device.downloads() == [(5, b"\x01\x02")]
