from pathlib import Path

import crcmod

# Reflected CRC-32 as written by ST's DfuSe tools: register starts at
# 0xFFFFFFFF and is returned without the final XOR, so
# util_crc32(x) == zlib.crc32(x) ^ 0xFFFFFFFF
_dfuse_crc32_fun = crcmod.mkCrcFun(0x104C11DB7, initCrc=0xFFFFFFFF, rev=True, xorOut=0)


def util_crc32(data) -> int:
    return _dfuse_crc32_fun(bytes(data))


def dfuse_crc32(buffer) -> int:
    """CRC of a whole .dfu buffer, excluding its trailing 4-byte checksum field."""
    return util_crc32(memoryview(buffer)[:-4])


def calculate_file_crc(file_name) -> int:
    return dfuse_crc32(Path(file_name).read_bytes())
