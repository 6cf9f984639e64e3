"""CRC-32 used by the bootloader to verify host packets.

This is the bit-serial, MSB-first variant computed by the STM32 CRC
peripheral when it is fed one byte per 32-bit word: polynomial
``0x04C11DB7``, initial value ``0xFFFFFFFF``, no reflection and no final
XOR. It is *not* the reflected CRC-32 of :mod:`zlib`; the two give
different results for the same input.
"""

from __future__ import annotations

CRC32_POLY = 0x04C11DB7
CRC32_INIT = 0xFFFFFFFF


def crc32(data: bytes) -> int:
    """Compute the bootloader CRC-32 of ``data``.

    Args:
        data: Bytes to checksum.

    Returns:
        The 32-bit checksum. ``crc32(b"")`` is ``0xFFFFFFFF``.
    """
    crc = CRC32_INIT
    for byte in data:
        crc ^= byte
        for _ in range(32):
            if crc & 0x80000000:
                crc = ((crc << 1) ^ CRC32_POLY) & 0xFFFFFFFF
            else:
                crc = (crc << 1) & 0xFFFFFFFF
    return crc
