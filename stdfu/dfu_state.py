from enum import IntEnum


class DFUState(IntEnum):
    APP_IDLE = 0x00
    APP_DETACH = 0x01
    DFU_IDLE = 0x02
    DFU_DNLOAD_SYNC = 0x03
    DFU_DNBUSY = 0x04
    DFU_DNLOAD_IDLE = 0x05
    DFU_MANIFEST_SYNC = 0x06
    DFU_MANIFEST = 0x07
    DFU_MANIFEST_WAIT_RESET = 0x08
    DFU_UPLOAD_IDLE = 0x09
    DFU_ERROR = 0x0A
    DFU_UPLOAD_SYNC = 0x91
    DFU_UPLOAD_BUSY = 0x92


class DFUStatusCode(IntEnum):
    OK = 0x00
    ERR_TARGET = 0x01
    ERR_FILE = 0x02
    ERR_WRITE = 0x03
    ERR_ERASE = 0x04
    ERR_CHECK_ERASED = 0x05
    ERR_PROG = 0x06
    ERR_VERIFY = 0x07
    ERR_ADDRESS = 0x08
    ERR_NOTDONE = 0x09
    ERR_FIRMWARE = 0x0A
    ERR_VENDOR = 0x0B
    ERR_USBR = 0x0C
    ERR_POR = 0x0D
    ERR_UNKNOWN = 0x0E
    ERR_STALLEDPKT = 0x0F


def state_name(value: int) -> str:
    try:
        return DFUState(value).name
    except ValueError:
        return f"UNKNOWN(0x{value:02X})"


def status_name(value: int) -> str:
    try:
        return DFUStatusCode(value).name
    except ValueError:
        return f"UNKNOWN(0x{value:02X})"
