"""
DfuFile.py

Parser and validator for ST DfuSe (.dfu) firmware containers.

Only the single-target, single-element layout produced by ST's DfuSe
file manager is handled: the element address/size and the image payload
are read from fixed offsets behind the prefix and the first target
prefix, and the standard 16-byte DFU suffix closes the file.

Usage::

    from stdfu.DfuFile import load_dfu_file

    path, image = load_dfu_file("firmware/")
    print(image.describe())
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from pathlib import Path

from stdfu import _log_root
from stdfu.config import (
    DEFAULT_WRITE_BLOCK_SIZE,
    DFU_FILE_EXTENSION,
    DFU_SPEC_BCD,
    DFU_SUFFIX_LENGTH,
    DFU_SUFFIX_SIGNATURE,
    DFUSE_ELEMENT_ADDRESS_OFFSET,
    DFUSE_ELEMENT_SIZE_OFFSET,
    DFUSE_FORMAT_VERSION,
    DFUSE_IMAGE_OFFSET,
    DFUSE_MIN_FILE_SIZE,
    DFUSE_SIGNATURE,
    DFUSE_TARGET_OFFSET,
    DFUSE_TARGET_SIGNATURE,
    DFUSE_VERSION_OFFSET,
)
from stdfu.DfuErrors import (
    ChecksumError,
    FileTooShortError,
    ImageBoundsError,
    InputError,
    SignatureError,
    SuffixError,
    SuffixFieldError,
    TargetSignatureError,
    VersionError,
)
from stdfu.utils import dfuse_crc32

logger = logging.getLogger(f"{_log_root}.DfuFile" if _log_root else "DfuFile")


@dataclass(frozen=True)
class DfuImage:
    """A fully validated DfuSe file. Only :func:`parse_dfu_file` builds these."""
    raw: bytes = field(repr=False)
    start_address: int
    length: int
    vendor_id: int
    product_id: int
    file_version: int
    max_write_block_size: int = DEFAULT_WRITE_BLOCK_SIZE
    payload_offset: int = DFUSE_IMAGE_OFFSET

    @property
    def image_data(self) -> bytes:
        return self.raw[self.payload_offset:self.payload_offset + self.length]

    @property
    def file_size(self) -> int:
        return len(self.raw)

    def describe(self) -> str:
        return (
            f"ElementAddress: 0x{self.start_address:08X}\t"
            f"ElementSize: {self.length} Bytes\n"
            f"VID: 0x{self.vendor_id:04X}\tPID: 0x{self.product_id:04X}\t"
            f"Version: 0x{self.file_version:04X}"
        )


def parse_dfu_file(buffer) -> DfuImage:
    """
    Validate ``buffer`` as a DfuSe file and return its :class:`DfuImage`.

    Raises
    ------
    ParseError
        One of its subclasses, naming the first check that failed. Nothing
        is returned unless every check passes.
    """
    data = bytes(buffer)
    size = len(data)

    if size < DFUSE_MIN_FILE_SIZE:
        raise FileTooShortError(
            f"File too short: {size} bytes, need at least {DFUSE_MIN_FILE_SIZE}"
        )

    if data[:len(DFUSE_SIGNATURE)] != DFUSE_SIGNATURE:
        raise SignatureError("File signature error: missing 'DfuSe' prefix")

    if data[DFUSE_VERSION_OFFSET] != DFUSE_FORMAT_VERSION:
        raise VersionError(
            f"DFU file version must be {DFUSE_FORMAT_VERSION}, got {data[DFUSE_VERSION_OFFSET]}"
        )

    target_end = DFUSE_TARGET_OFFSET + len(DFUSE_TARGET_SIGNATURE)
    if data[DFUSE_TARGET_OFFSET:target_end] != DFUSE_TARGET_SIGNATURE:
        raise TargetSignatureError("Target signature error: expected a single 'Target' prefix")

    (start_address,) = struct.unpack_from("<I", data, DFUSE_ELEMENT_ADDRESS_OFFSET)
    (length,) = struct.unpack_from("<I", data, DFUSE_ELEMENT_SIZE_OFFSET)

    (stored_crc,) = struct.unpack_from("<I", data, size - 4)
    crc = dfuse_crc32(data)
    if crc != stored_crc:
        raise ChecksumError(
            f"CRC failed: file says 0x{stored_crc:08X}, calculated 0x{crc:08X}",
            expected=stored_crc,
            actual=crc,
        )

    if data[size - 8:size - 5] != DFU_SUFFIX_SIGNATURE:
        raise SuffixError("File suffix error: missing 'UFD' signature")

    if (
        data[size - 5] != DFU_SUFFIX_LENGTH
        or (data[size - 10], data[size - 9]) != DFU_SPEC_BCD
    ):
        raise SuffixFieldError(
            f"File suffix fields invalid: bLength={data[size - 5]}, "
            f"bcdDFU=0x{data[size - 9]:02X}{data[size - 10]:02X}"
        )

    file_version, product_id, vendor_id = struct.unpack_from("<HHH", data, size - DFU_SUFFIX_LENGTH)

    if DFUSE_IMAGE_OFFSET + length > size - DFU_SUFFIX_LENGTH:
        raise ImageBoundsError(
            f"Element size {length} runs past the end of the image data "
            f"({size - DFU_SUFFIX_LENGTH - DFUSE_IMAGE_OFFSET} bytes available)"
        )

    logger.debug(
        f"Parsed DfuSe file: {size} bytes, address 0x{start_address:08X}, "
        f"length {length}, VID 0x{vendor_id:04X}, PID 0x{product_id:04X}"
    )
    return DfuImage(
        raw=data,
        start_address=start_address,
        length=length,
        vendor_id=vendor_id,
        product_id=product_id,
        file_version=file_version,
    )


def find_dfu_file(directory) -> Path:
    """Return the first ``.dfu`` file (by name) found directly inside ``directory``."""
    directory = Path(directory)
    if not directory.is_dir():
        raise InputError(f"Firmware directory not found: {directory}")

    candidates = sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.name.lower().endswith(DFU_FILE_EXTENSION)
    )
    if not candidates:
        raise InputError(f"No {DFU_FILE_EXTENSION} file found in {directory}")
    if len(candidates) > 1:
        logger.info(f"{len(candidates)} {DFU_FILE_EXTENSION} files in {directory}, using {candidates[0].name}")
    return candidates[0]


def load_dfu_file(path) -> tuple[Path, DfuImage]:
    path = Path(path)
    if path.is_dir():
        path = find_dfu_file(path)
    if not path.is_file():
        raise InputError(f"Firmware file not found: {path}")
    return path, parse_dfu_file(path.read_bytes())
