import pytest
import usb.core

import stdfu.DfuDevice
from stdfu.cli import main
from stdfu.DfuDevice import DfuDevice

from conftest import build_dfuse, pattern


def test_info_valid_file(tmp_path, capsys) -> None:
    path = tmp_path / "app.dfu"
    path.write_bytes(build_dfuse(pattern(200), address=0x08010000))

    assert main(["info", str(path)]) == 0
    out = capsys.readouterr().out
    assert "0x08010000" in out
    assert "200 Bytes" in out


def test_info_invalid_file(tmp_path, capsys) -> None:
    path = tmp_path / "bad.dfu"
    path.write_bytes(b"not a dfu file" * 40)

    assert main(["info", str(path)]) == 1
    assert "signature" in capsys.readouterr().out


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 1
    assert "Commands" in capsys.readouterr().out


class _DisconnectedDevice:
    interface_index = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def is_connected(self) -> bool:
        return False


def test_erase_without_connected_device(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setattr(DfuDevice, "find", classmethod(lambda cls, vid, pid: _DisconnectedDevice()))

    assert main(["erase"]) == 1
    assert "No device connected" in capsys.readouterr().out


def test_list_without_usb_backend(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    def no_backend(vid, pid):
        raise usb.core.NoBackendError("No backend available")

    monkeypatch.setattr(stdfu.DfuDevice, "list_dfu_devices", no_backend)

    assert main(["list"]) == 1
    assert "No backend available" in capsys.readouterr().out
