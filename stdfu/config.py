# USB identity of the STM32 system-memory bootloader
ST_DFU_VID = 0x0483
ST_DFU_PID = 0xDF11

# bmRequestType bits
USB_DIR_OUT = 0x00
USB_DIR_IN = 0x80
DFU_REQUEST_TYPE = 0x21  # class request, recipient interface

# DFU class requests (bRequest)
DFU_DETACH = 0x00
DFU_DNLOAD = 0x01
DFU_UPLOAD = 0x02
DFU_GETSTATUS = 0x03
DFU_CLRSTATUS = 0x04
DFU_GETSTATE = 0x05
DFU_ABORT = 0x06

DFU_STATUS_LENGTH = 6

# DfuSe vendor commands, sent as DNLOAD payloads on block 0
DFUSE_CMD_SET_ADDRESS = 0x21
DFUSE_CMD_ERASE = 0x41

# Block numbers 0 and 1 are reserved for DfuSe commands
DFUSE_DATA_BLOCK_OFFSET = 2

# DfuSe file layout (single target, single element)
DFUSE_SIGNATURE = b"DfuSe"
DFUSE_FORMAT_VERSION = 1
DFUSE_TARGET_SIGNATURE = b"Target"
DFUSE_VERSION_OFFSET = 5
DFUSE_TARGET_OFFSET = 11
DFUSE_ELEMENT_ADDRESS_OFFSET = 285
DFUSE_ELEMENT_SIZE_OFFSET = 289
DFUSE_IMAGE_OFFSET = 293

DFU_SUFFIX_SIGNATURE = b"UFD"
DFU_SUFFIX_LENGTH = 16
DFU_SPEC_BCD = (0x1A, 0x01)  # bcdDFU 0x011A, little-endian
DFUSE_MIN_FILE_SIZE = DFUSE_IMAGE_OFFSET + DFU_SUFFIX_LENGTH

DFU_FILE_EXTENSION = ".dfu"

# Bootloader bcdDevice -> max write block size
DEFAULT_WRITE_BLOCK_SIZE = 1024
BOOTLOADER_BLOCK_SIZES = {
    0x011A: 1024,
    0x0200: 1024,
    0x2100: 2048,
    0x2200: 2048,
}

# Unused tail of a partial final block
FLASH_PAD_BYTE = 0xFF

# Timing
STATUS_TIMEOUT_MS = 500
TRANSFER_TIMEOUT_MS = 5000
POLL_INTERVAL_S = 0.0  # 0 keeps the idle-wait loop a pure busy poll
