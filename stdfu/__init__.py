from __future__ import annotations
from importlib.metadata import PackageNotFoundError, version as _pkg_version

_log_root = "stdfu"

from .config import *
from .DfuErrors import (
    DfuError,
    ParseError,
    CompatibilityError,
    TransportError,
    InputError,
)
from .DfuFile import DfuImage, parse_dfu_file, find_dfu_file, load_dfu_file
from .Compatibility import DeviceIdentity, negotiate
from .DfuProtocol import DfuProtocol, DfuStatus
from .DFUProgrammer import DFUProgrammer, DFUProgress, DFUResult

__all__ = [
    "DfuError",
    "ParseError",
    "CompatibilityError",
    "TransportError",
    "InputError",
    "DfuImage",
    "parse_dfu_file",
    "find_dfu_file",
    "load_dfu_file",
    "DeviceIdentity",
    "negotiate",
    "DfuProtocol",
    "DfuStatus",
    "DFUProgrammer",
    "DFUProgress",
    "DFUResult",
    "__version__",
]

try:
    # installed: read the dist-info METADATA
    __version__ = _pkg_version("stm32-dfu-programmer")
except PackageNotFoundError:
    # source checkout: read pyproject.toml
    try:
        import tomllib  # Python 3.11+
        from pathlib import Path
        pyproject = (Path(__file__).resolve().parents[1] / "pyproject.toml").read_text(encoding="utf-8")
        __version__ = tomllib.loads(pyproject)["project"]["version"]
    except Exception:
        __version__ = "0+unknown"
