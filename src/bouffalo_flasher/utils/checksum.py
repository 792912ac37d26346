"""
Checksums used by the firmware image records and the ISP protocol.
"""

from typing import Optional

CRC32_POLY = 0xEDB88320
CRC32_INIT = 0xFFFFFFFF


def crc32(data: bytes, offset: int = 0, count: Optional[int] = None) -> int:
    """
    Bit-reflected CRC-32 (poly 0xEDB88320, init/final 0xFFFFFFFF).

    This is the checksum the boot ROM expects on flash/clock configs,
    boot headers and segment headers. Reference vector:
    crc32(b"123456789") == 0xCBF43926.

    Args:
        data: Bytes to checksum
        offset: First byte to include
        count: Number of bytes to include (default: to the end)
    """
    if count is None:
        count = len(data) - offset
    if offset < 0 or count < 0 or offset + count > len(data):
        raise ValueError("crc range out of bounds")

    crc = CRC32_INIT
    for b in data[offset:offset + count]:
        crc ^= b
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ CRC32_POLY
            else:
                crc >>= 1
    return ~crc & 0xFFFFFFFF


def checksum8(data: bytes) -> int:
    """8-bit wraparound sum, as used by eflash loader command frames."""
    return sum(data) & 0xFF
