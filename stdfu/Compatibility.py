from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from stdfu import _log_root
from stdfu.config import BOOTLOADER_BLOCK_SIZES
from stdfu.DfuErrors import IdentityMismatch, UnsupportedBootloader
from stdfu.DfuFile import DfuImage

logger = logging.getLogger(f"{_log_root}.Compatibility" if _log_root else "Compatibility")

WarningCallback = Callable[[str], None]


@dataclass(frozen=True)
class DeviceIdentity:
    vendor_id: int
    product_id: int
    bootloader_version: int  # bcdDevice

    def __str__(self) -> str:
        return (
            f"VID: 0x{self.vendor_id:04X}\tPID: 0x{self.product_id:04X}\t"
            f"Bootloader: 0x{self.bootloader_version:04X}"
        )


def block_size_for_bootloader(bootloader_version: int) -> int:
    try:
        return BOOTLOADER_BLOCK_SIZES[bootloader_version]
    except KeyError:
        raise UnsupportedBootloader(
            f"Unsupported bootloader version 0x{bootloader_version:04X}"
        ) from None


def negotiate(
    image: DfuImage,
    device: DeviceIdentity,
    warn: Optional[WarningCallback] = None,
) -> DfuImage:
    """
    Check that ``image`` was built for ``device`` and pick the write block size.

    A VID/PID mismatch is fatal. A file version that differs from the
    bootloader version is only reported through ``warn`` (or the logger).
    Returns a copy of ``image`` with ``max_write_block_size`` set.
    """
    if image.vendor_id != device.vendor_id or image.product_id != device.product_id:
        raise IdentityMismatch(
            f"PID/VID mismatch: device {device.vendor_id:04X}:{device.product_id:04X}, "
            f"file {image.vendor_id:04X}:{image.product_id:04X}"
        )

    if image.file_version != device.bootloader_version:
        message = (
            f"Warning: Device Version: 0x{device.bootloader_version:04X}\t"
            f"File Version: 0x{image.file_version:04X}"
        )
        if warn is not None:
            warn(message)
        else:
            logger.warning(message)

    block_size = block_size_for_bootloader(device.bootloader_version)
    return dataclasses.replace(image, max_write_block_size=block_size)
